# agromarket/repos/product_repo.py
from typing import Dict, Iterable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from agromarket.data.models.product import ProductModel


class ProductRepo:
    """Katalog: odczyt ceny/stocku i zmiany stocku w transakcji sesji."""

    def __init__(self, db: Session):
        self.db = db

    def get_product(self, product_id: int) -> ProductModel | None:
        return self.db.execute(
            select(ProductModel)
            .where(ProductModel.id == product_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_products(self, product_ids: Iterable[int]) -> Dict[int, ProductModel]:
        ids = sorted(set(product_ids))
        if not ids:
            return {}
        rows = self.db.execute(
            select(ProductModel)
            .where(ProductModel.id.in_(ids))
            .execution_options(populate_existing=True)
        ).scalars()
        return {p.id: p for p in rows}

    def lock_products(self, product_ids: Iterable[int]) -> Dict[int, ProductModel]:
        #SELECT ... FOR UPDATE w stalej kolejnosci id, zeby dwa checkouty nie zakleszczyly sie na wierszach
        ids = sorted(set(product_ids))
        if not ids:
            return {}
        rows = self.db.execute(
            select(ProductModel)
            .where(ProductModel.id.in_(ids))
            .order_by(ProductModel.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars()
        return {p.id: p for p in rows}

    def decrement_stock(self, product_id: int, quantity: int) -> bool:
        #warunkowy update - 0 wierszy = ktos inny wykupil stock
        res = self.db.execute(
            update(ProductModel)
            .where(ProductModel.id == product_id, ProductModel.stock >= quantity)
            .values(stock=ProductModel.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    def restore_stock(self, product_id: int, quantity: int) -> None:
        self.db.execute(
            update(ProductModel)
            .where(ProductModel.id == product_id)
            .values(stock=ProductModel.stock + quantity)
            .execution_options(synchronize_session=False)
        )
