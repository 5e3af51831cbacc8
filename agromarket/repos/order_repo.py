# agromarket/repos/order_repo.py
from typing import Dict, Iterable, List

from sqlalchemy import select, update, delete
from sqlalchemy.orm import Session, selectinload

from agromarket.data.models.order import OrderModel
from agromarket.data.models.order_line import OrderLineModel


class OrderRepo:
    def __init__(self, db: Session):
        self.db = db

    def add_order(self, order: OrderModel) -> OrderModel:
        self.db.add(order)
        self.db.flush()
        return order

    def add_line(self, line: OrderLineModel) -> OrderLineModel:
        self.db.add(line)
        return line

    def get_order(self, order_id: int) -> OrderModel | None:
        return self.db.execute(
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .options(selectinload(OrderModel.lines))
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_orders(self, order_ids: Iterable[int]) -> List[OrderModel]:
        ids = list(order_ids)
        if not ids:
            return []
        return list(
            self.db.execute(
                select(OrderModel)
                .where(OrderModel.id.in_(ids))
                .options(selectinload(OrderModel.lines))
                .execution_options(populate_existing=True)
                .order_by(OrderModel.id)
            ).scalars()
        )

    def lock_orders(self, order_ids: Iterable[int]) -> Dict[int, OrderModel]:
        """
        SELECT ... FOR UPDATE na zamowieniach, zawsze w kolejnosci id.
        Zamowienie blokujemy przed jego platnoscia - wszedzie ta sama kolejnosc.
        """
        ids = sorted(set(order_ids))
        if not ids:
            return {}
        rows = self.db.execute(
            select(OrderModel)
            .where(OrderModel.id.in_(ids))
            .order_by(OrderModel.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars()
        return {o.id: o for o in rows}

    def list_for_buyer(self, buyer_id: int) -> List[OrderModel]:
        return list(
            self.db.execute(
                select(OrderModel)
                .where(OrderModel.buyer_id == buyer_id)
                .options(selectinload(OrderModel.lines))
                .execution_options(populate_existing=True)
                .order_by(OrderModel.created_at.desc(), OrderModel.id.desc())
            ).scalars()
        )

    def list_for_seller(self, seller_id: int) -> List[OrderModel]:
        return list(
            self.db.execute(
                select(OrderModel)
                .where(OrderModel.seller_id == seller_id)
                .options(selectinload(OrderModel.lines))
                .execution_options(populate_existing=True)
                .order_by(OrderModel.created_at.desc(), OrderModel.id.desc())
            ).scalars()
        )

    def list_stale_pending(self, older_than) -> List[OrderModel]:
        return list(
            self.db.execute(
                select(OrderModel)
                .where(
                    OrderModel.order_status == "pending",
                    OrderModel.payment_status != "paid",
                    OrderModel.created_at < older_than,
                )
                .order_by(OrderModel.id)
            ).scalars()
        )

    def get_lines(self, order_ids: Iterable[int]) -> List[OrderLineModel]:
        ids = list(order_ids)
        if not ids:
            return []
        return list(
            self.db.execute(
                select(OrderLineModel)
                .where(OrderLineModel.order_id.in_(ids))
                .order_by(OrderLineModel.id)
            ).scalars()
        )

    def update_statuses(self, order_ids: Iterable[int], **values) -> int:
        ids = list(order_ids)
        if not ids:
            return 0
        res = self.db.execute(
            update(OrderModel)
            .where(OrderModel.id.in_(ids))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount

    def cancel_if_pending(self, order_id: int) -> bool:
        res = self.db.execute(
            update(OrderModel)
            .where(
                OrderModel.id == order_id,
                OrderModel.order_status == "pending",
                OrderModel.payment_status != "paid",
            )
            .values(order_status="canceled")
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    def delete_orders(self, order_ids: Iterable[int]) -> None:
        #tylko kompensacja checkoutu, ktory nie dostal sesji platnosci
        ids = list(order_ids)
        if not ids:
            return
        self.db.execute(delete(OrderLineModel).where(OrderLineModel.order_id.in_(ids)))
        self.db.execute(delete(OrderModel).where(OrderModel.id.in_(ids)))
