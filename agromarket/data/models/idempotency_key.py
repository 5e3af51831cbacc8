from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, Text, UniqueConstraint
from datetime import datetime, timezone

from agromarket.data.database import Base


class IdempotencyKeyModel(Base):
    __tablename__ = "idempotency_keys"

    id = Column(Integer, primary_key=True)
    key = Column(String, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    scope = Column(String, nullable=False)  # checkout
    request_hash = Column(String, nullable=False)
    status_code = Column(Integer, nullable=True)
    response_json = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (UniqueConstraint("user_id", "scope", "key", name="u_idem_user_scope_key"),)
