# agromarket/domain/errors.py
from typing import Any, Dict, List


class CheckoutError(Exception):
    """Bazowy blad domeny checkout/platnosci, niesie kod dla klienta."""

    code = "CHECKOUT_ERROR"

    def __init__(self, message: str, details: Dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_detail(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details}


class ValidationError(CheckoutError):
    code = "VALIDATION_ERROR"


class CartValidationFailed(ValidationError):
    """Walidacja koszyka zwrocila bledy, details zawiera linie do poprawy."""

    code = "CART_INVALID"

    def __init__(self, errors: List[Dict[str, Any]], warnings: List[Dict[str, Any]]):
        super().__init__(
            "Koszyk zawiera bledy, popraw ilosci i sprobuj ponownie",
            {"errors": errors, "warnings": warnings},
        )
        self.errors = errors
        self.warnings = warnings


class StockConflict(CheckoutError):
    code = "INSUFFICIENT_STOCK"


class ProductUnavailable(StockConflict):
    code = "PRODUCT_UNAVAILABLE"


class ValidationStale(CheckoutError):
    code = "VALIDATION_STALE"


class TransactionConflict(CheckoutError):
    code = "TRANSACTION_CONFLICT"


class GatewayError(CheckoutError):
    code = "GATEWAY_ERROR"


class CheckoutInProgress(CheckoutError):
    code = "CHECKOUT_IN_PROGRESS"


class IdempotencyMismatch(CheckoutError):
    code = "IDEMPOTENCY_KEY_REUSED"


class PaymentNotFound(CheckoutError):
    code = "PAYMENT_NOT_FOUND"


class OrderNotFound(CheckoutError):
    code = "ORDER_NOT_FOUND"


class InvalidPaymentState(CheckoutError):
    code = "INVALID_PAYMENT_STATE"


class MalformedEvent(CheckoutError):
    code = "MALFORMED_EVENT"


class DuplicateEvent(CheckoutError):
    """Zdarzenie dla platnosci w stanie terminalnym - no-op, zawsze 200."""

    code = "DUPLICATE_EVENT"


class PaymentAlreadySucceeded(InvalidPaymentState):
    """Ponowienie dla intentu, ktory w bramce jest juz oplacony."""

    code = "PAYMENT_ALREADY_SUCCEEDED"
