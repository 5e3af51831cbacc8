# agromarket/services/payment_gateway.py
"""
Adapter Stripe: jedyne miejsce, ktore rozmawia z bramka platnosci.
Reszta serwisu widzi tylko GatewayIntent i GatewayError.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict

import stripe

from agromarket.domain.errors import GatewayError
from agromarket.utils.retry import gateway_retry
from agromarket.utils.settings import STRIPE_SECRET_KEY, STRIPE_TIMEOUT_SECONDS
from agromarket.utils.logging import get_logger

logger = get_logger(__name__)

GATEWAY_NAME = "stripe"


@dataclass
class GatewayIntent:
    id: str
    client_secret: str | None
    status: str | None = None


def to_minor_units(amount: Decimal) -> int:
    """Kwota w najmniejszej jednostce waluty (centy)."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripeGateway:
    name = GATEWAY_NAME

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        self.api_key = api_key if api_key is not None else STRIPE_SECRET_KEY
        self.timeout = timeout or STRIPE_TIMEOUT_SECONDS
        #jeden klient http z twardym timeoutem - zawieszona bramka nie blokuje requestu w nieskonczonosc
        stripe.default_http_client = stripe.RequestsClient(timeout=self.timeout)
        stripe.max_network_retries = 0

    def _require_key(self) -> str:
        if not self.api_key:
            raise GatewayError("Brak konfiguracji STRIPE_SECRET_KEY")
        return self.api_key

    @gateway_retry()
    def _create(self, **params) -> stripe.PaymentIntent:
        return stripe.PaymentIntent.create(api_key=self._require_key(), **params)

    def create_payment_intent(
        self,
        amount: Decimal,
        currency: str,
        metadata: Dict[str, str],
        idempotency_key: str,
    ) -> GatewayIntent:
        amount_minor = to_minor_units(amount)
        logger.info(f"Stripe create PaymentIntent amount={amount_minor} {currency} key={idempotency_key}")
        try:
            intent = self._create(
                amount=amount_minor,
                currency=currency,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe create PaymentIntent failed: {e}")
            raise GatewayError("Nie udalo sie zainicjowac platnosci, sprobuj ponownie pozniej") from e

        return GatewayIntent(id=intent["id"], client_secret=intent.get("client_secret"), status=intent.get("status"))

    def get_payment_intent(self, intent_id: str) -> GatewayIntent:
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, api_key=self._require_key())
        except stripe.StripeError as e:
            logger.error(f"Stripe retrieve PaymentIntent {intent_id} failed: {e}")
            raise GatewayError("Nie udalo sie pobrac statusu platnosci") from e
        return GatewayIntent(id=intent["id"], client_secret=intent.get("client_secret"), status=intent.get("status"))

    def cancel_payment_intent(self, intent_id: str) -> None:
        try:
            stripe.PaymentIntent.cancel(intent_id, api_key=self._require_key())
        except stripe.StripeError as e:
            logger.error(f"Stripe cancel PaymentIntent {intent_id} failed: {e}")
            raise GatewayError("Nie udalo sie anulowac platnosci") from e

    def verify_signature(self, payload: bytes, signature: str | None, secret: str) -> None:
        """Weryfikuje naglowek Stripe-Signature, rzuca stripe.SignatureVerificationError."""
        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise stripe.SignatureVerificationError("Payload webhooka nie jest UTF-8", signature) from e
        stripe.WebhookSignature.verify_header(body, signature or "", secret)
