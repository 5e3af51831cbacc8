# agromarket/repos/cart_repo.py
from datetime import datetime, timezone
from typing import Iterable, List, Tuple

from sqlalchemy import select, update, delete, and_
from sqlalchemy.orm import Session

from agromarket.data.models.cart import CartModel
from agromarket.data.models.cart_item import CartItemModel


class CartRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_cart_by_user(self, user_id: int) -> CartModel | None:
        return self.db.execute(
            select(CartModel)
            .where(CartModel.user_id == user_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def create_cart(self, cart: CartModel) -> CartModel:
        self.db.add(cart)
        self.db.commit()
        self.db.refresh(cart)
        return cart

    def get_cart_items(self, cart_id: int) -> List[CartItemModel]:
        return list(
            self.db.execute(
                select(CartItemModel)
                .where(CartItemModel.cart_id == cart_id)
                .order_by(CartItemModel.id)
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def get_cart_item(self, cart_id: int, product_id: int) -> CartItemModel | None:
        return self.db.execute(
            select(CartItemModel).where(
                CartItemModel.cart_id == cart_id,
                CartItemModel.product_id == product_id,
            ).execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def add_cart_item(self, item: CartItemModel) -> CartItemModel:
        self.db.add(item)
        self.db.flush()
        return item

    def delete_cart_item(self, cart_id: int, product_id: int) -> int:
        res = self.db.execute(
            delete(CartItemModel).where(
                CartItemModel.cart_id == cart_id,
                CartItemModel.product_id == product_id,
            )
        )
        return res.rowcount

    def clear_items(self, cart_id: int) -> int:
        res = self.db.execute(delete(CartItemModel).where(CartItemModel.cart_id == cart_id))
        return res.rowcount

    def delete_items_if_unchanged(self, snapshot: Iterable[Tuple[int, int]]) -> int:
        """
        Usuwa pozycje (item_id, quantity) tylko jesli ilosc sie nie zmienila
        od walidacji - pozycje zmienione w trakcie checkoutu zostaja w koszyku.
        """
        removed = 0
        for item_id, quantity in snapshot:
            res = self.db.execute(
                delete(CartItemModel).where(
                    and_(CartItemModel.id == item_id, CartItemModel.quantity == quantity)
                )
            )
            removed += res.rowcount
        return removed

    def update_cart_version(self, cart_id: int, old_version: int, new_data: dict) -> int:
        #update carts set version = 2 where id = 1 and version = 1
        values = {"updated_at": datetime.now(timezone.utc), **new_data}
        res = self.db.execute(
            update(CartModel)
            .where(CartModel.id == cart_id, CartModel.version == old_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
