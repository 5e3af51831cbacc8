# agromarket/domain/schemas.py
from pydantic import BaseModel, Field, ConfigDict
from typing import Any, Dict, List, Literal, Optional
from decimal import Decimal
from datetime import datetime

from agromarket.utils.settings import CART_MAX_QUANTITY

PaymentMethod = Literal["cash", "card", "transfer"]
PaymentOutcome = Literal["succeeded", "failed", "canceled"]


class CartItemIn(BaseModel):
    """Schema dla dodawania produktu do koszyka."""

    product_id: int = Field(..., gt=0, description="ID produktu (musi być > 0)")
    quantity: int = Field(..., gt=0, le=CART_MAX_QUANTITY, description="Ilość produktu")


class CartItemUpdateIn(BaseModel):
    quantity: int = Field(..., gt=0, le=CART_MAX_QUANTITY)


class CartItemOut(BaseModel):
    product_id: int
    name: str | None = None
    quantity: int
    unit_price: Decimal | None = None
    unit_price_snapshot: Decimal | None = None
    line_total: Decimal
    available: bool
    stock: int = 0


class CartOut(BaseModel):
    """Schema dla koszyka (response)."""

    cart_id: int | None = None
    user_id: int
    items: List[CartItemOut]
    total_items: int
    total_price: Decimal
    version: int = 0
    updated_at: datetime | None = None


class CartStatsOut(BaseModel):
    total_items: int
    total_price: Decimal
    unique_products: int
    available_products: int
    unavailable_products: int
    availability_percentage: float
    updated_at: datetime | None = None


class ValidatedLine(BaseModel):
    """Linia koszyka przeliczona z aktualnego katalogu - nigdy nie zapisywana."""

    item_id: int
    product_id: int
    seller_id: int | None = None
    name: str | None = None
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    available: bool


class CartValidation(BaseModel):
    valid: bool
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    warnings: List[Dict[str, Any]] = Field(default_factory=list)
    lines: List[ValidatedLine] = Field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((line.line_total for line in self.lines), Decimal("0.00"))


class CheckoutIn(BaseModel):
    """Schema dla checkoutu (koszyk -> zamowienia)."""

    delivery_address: str = Field(..., min_length=10, max_length=500)
    notes: str = Field("", max_length=1000)
    payment_method: PaymentMethod


class PaymentSession(BaseModel):
    status: str
    method: PaymentMethod
    amount: Decimal
    currency: str
    client_secret: Optional[str] = None
    gateway_reference: Optional[str] = None


class ConversionResult(BaseModel):
    success: bool
    order_ids: List[int]
    payment_ids: List[int]
    total: Decimal


class CheckoutOut(BaseModel):
    order_ids: List[int]
    total: Decimal
    payment: PaymentSession
    warnings: List[Dict[str, Any]] = Field(default_factory=list)


class PaymentConfirmIn(BaseModel):
    gateway_reference: str = Field(..., min_length=1)
    outcome: PaymentOutcome


class PaymentRetryIn(BaseModel):
    gateway_reference: str = Field(..., min_length=1)


class ReconcileOut(BaseModel):
    status: Literal["ok", "ignored"] = "ok"
    applied: bool
    duplicate: bool = False
    payment_status: str | None = None
    order_ids: List[int] = Field(default_factory=list)


class OrderLineOut(BaseModel):
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal

    model_config = ConfigDict(from_attributes=True)


class PaymentOut(BaseModel):
    id: int
    amount: Decimal
    currency: str
    method: str
    gateway: str | None = None
    gateway_reference: str | None = None
    status: str

    model_config = ConfigDict(from_attributes=True)


class OrderOut(BaseModel):
    """Schema dla zamówienia (response)."""

    id: int
    buyer_id: int
    seller_id: int
    delivery_address: str
    notes: str
    payment_method: str
    order_status: str
    payment_status: str
    total: Decimal
    created_at: datetime
    lines: List[OrderLineOut]
    payment: PaymentOut | None = None

    model_config = ConfigDict(from_attributes=True)
