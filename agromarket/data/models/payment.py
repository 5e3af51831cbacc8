from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, Numeric
from datetime import datetime, timezone

from agromarket.data.database import Base


class PaymentModel(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    buyer_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    method = Column(String, nullable=False)
    gateway = Column(String, nullable=True)  # None dla gotowki
    gateway_reference = Column(String, nullable=True, index=True)
    #referencja ktora ta rewizja zastepuje (ponowienie platnosci)
    supersedes = Column(String, nullable=True, index=True)

    status = Column(String, nullable=False, default="pending")  # pending -> paid | failed | canceled

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
