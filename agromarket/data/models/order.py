from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, Numeric
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from agromarket.data.database import Base

class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    buyer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    delivery_address = Column(String, nullable=False)
    notes = Column(String, nullable=False, default="")
    payment_method = Column(String, nullable=False)  # cash, card, transfer

    order_status = Column(String, nullable=False, default="pending")  # pending, confirmed, canceled
    payment_status = Column(String, nullable=False, default="pending")  # pending, paid, failed, canceled
    total = Column(Numeric(12, 2), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    lines = relationship("OrderLineModel", back_populates="order", order_by="OrderLineModel.id")
