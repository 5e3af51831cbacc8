# agromarket/api/errors.py
from fastapi import HTTPException
from fastapi.encoders import jsonable_encoder

from agromarket.domain.errors import (
    CheckoutError,
    CheckoutInProgress,
    GatewayError,
    IdempotencyMismatch,
    OrderNotFound,
    PaymentNotFound,
)


def http_error(e: CheckoutError) -> HTTPException:
    """Blad domeny -> HTTPException z detail {code, message, ...}."""
    if isinstance(e, (OrderNotFound, PaymentNotFound)):
        status = 404
    elif isinstance(e, (CheckoutInProgress, IdempotencyMismatch)):
        status = 409
    elif isinstance(e, GatewayError):
        status = 502
    else:
        status = 400
    #details moga zawierac Decimal
    return HTTPException(status_code=status, detail=jsonable_encoder(e.to_detail()))
