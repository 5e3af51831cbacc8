#agromarket/data/models/product.py
from sqlalchemy import Column, Integer, ForeignKey, String, Boolean, DateTime, Numeric

from agromarket.data.database import Base


class ProductModel(Base):
    """Wiersz katalogu - CRUD produktow jest poza tym serwisem, tu tylko cena/stock/dostepnosc."""

    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    name = Column(String, nullable=False)
    unit = Column(String, nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    available = Column(Boolean, nullable=False, default=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
