# agromarket/repos/payment_repo.py
from typing import Iterable, List

from sqlalchemy import select, update, delete
from sqlalchemy.orm import Session

from agromarket.data.models.payment import PaymentModel

TERMINAL_STATUSES = ("paid", "failed", "canceled")


class PaymentRepo:
    def __init__(self, db: Session):
        self.db = db

    def add_payment(self, payment: PaymentModel) -> PaymentModel:
        self.db.add(payment)
        self.db.flush()
        return payment

    def get_by_reference(self, gateway_reference: str) -> List[PaymentModel]:
        return list(
            self.db.execute(
                select(PaymentModel)
                .where(PaymentModel.gateway_reference == gateway_reference)
                .order_by(PaymentModel.order_id)
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def get_payment(self, payment_id: int) -> PaymentModel | None:
        return self.db.execute(
            select(PaymentModel)
            .where(PaymentModel.id == payment_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def latest_for_order(self, order_id: int) -> PaymentModel | None:
        return self.db.execute(
            select(PaymentModel)
            .where(PaymentModel.order_id == order_id)
            .order_by(PaymentModel.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def pending_superseding(self, gateway_reference: str) -> List[PaymentModel]:
        return list(
            self.db.execute(
                select(PaymentModel)
                .where(
                    PaymentModel.supersedes == gateway_reference,
                    PaymentModel.status == "pending",
                )
                .order_by(PaymentModel.order_id)
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def set_reference(self, payment_ids: Iterable[int], gateway: str, gateway_reference: str) -> int:
        ids = list(payment_ids)
        res = self.db.execute(
            update(PaymentModel)
            .where(PaymentModel.id.in_(ids), PaymentModel.status == "pending")
            .values(gateway=gateway, gateway_reference=gateway_reference)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount

    def adopt_reference(self, payment_id: int, gateway_reference: str) -> bool:
        #tylko jesli platnosc nie ma jeszcze referencji (zapis referencji sie zgubil)
        res = self.db.execute(
            update(PaymentModel)
            .where(
                PaymentModel.id == payment_id,
                PaymentModel.gateway_reference.is_(None),
                PaymentModel.status == "pending",
            )
            .values(gateway_reference=gateway_reference)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    def transition_by_reference(self, gateway_reference: str, new_status: str) -> int:
        """
        Atomowe przejscie pending -> new_status dla wszystkich platnosci z dana referencja.
        update ... where status = 'pending', wiec stan terminalny nigdy nie jest nadpisany.
        """
        res = self.db.execute(
            update(PaymentModel)
            .where(
                PaymentModel.gateway_reference == gateway_reference,
                PaymentModel.status == "pending",
            )
            .values(status=new_status)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount

    def transition_by_id(self, payment_id: int, new_status: str) -> bool:
        res = self.db.execute(
            update(PaymentModel)
            .where(PaymentModel.id == payment_id, PaymentModel.status == "pending")
            .values(status=new_status)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    def delete_for_orders(self, order_ids: Iterable[int]) -> None:
        ids = list(order_ids)
        if ids:
            self.db.execute(delete(PaymentModel).where(PaymentModel.order_id.in_(ids)))
