from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import stripe

from agromarket.domain.errors import GatewayError
from agromarket.services.payment_gateway import StripeGateway, to_minor_units


@pytest.mark.parametrize(
    "amount,minor",
    [
        (Decimal("12.00"), 1200),
        (Decimal("0.01"), 1),
        (Decimal("4.505"), 451),
        (Decimal("18.75"), 1875),
    ],
)
def test_to_minor_units(amount, minor):
    assert to_minor_units(amount) == minor


def test_create_payment_intent_sends_minor_units_and_idempotency_key(monkeypatch):
    create = MagicMock(return_value={"id": "pi_1", "client_secret": "pi_1_secret", "status": "requires_payment_method"})
    monkeypatch.setattr(stripe.PaymentIntent, "create", create)

    intent = StripeGateway(api_key="sk_test_x").create_payment_intent(
        Decimal("18.75"), "usd", {"order_id": "1"}, "checkout-1-2"
    )

    assert intent.id == "pi_1"
    assert intent.client_secret == "pi_1_secret"
    kwargs = create.call_args.kwargs
    assert kwargs["amount"] == 1875
    assert kwargs["currency"] == "usd"
    assert kwargs["idempotency_key"] == "checkout-1-2"
    assert kwargs["metadata"] == {"order_id": "1"}
    assert kwargs["api_key"] == "sk_test_x"


def test_connection_error_is_retried_once(monkeypatch):
    create = MagicMock(
        side_effect=[
            stripe.APIConnectionError("timeout"),
            {"id": "pi_2", "client_secret": "s", "status": "requires_payment_method"},
        ]
    )
    monkeypatch.setattr(stripe.PaymentIntent, "create", create)

    intent = StripeGateway(api_key="sk_test_x").create_payment_intent(Decimal("1.00"), "usd", {}, "k")

    assert intent.id == "pi_2"
    assert create.call_count == 2
    #ten sam klucz przy ponowieniu
    assert {c.kwargs["idempotency_key"] for c in create.call_args_list} == {"k"}


def test_stripe_error_becomes_gateway_error(monkeypatch):
    monkeypatch.setattr(stripe.PaymentIntent, "create", MagicMock(side_effect=stripe.CardError("odrzucona", None, "card_declined")))

    with pytest.raises(GatewayError):
        StripeGateway(api_key="sk_test_x").create_payment_intent(Decimal("1.00"), "usd", {}, "k")


def test_missing_api_key_is_gateway_error():
    with pytest.raises(GatewayError):
        StripeGateway(api_key="").create_payment_intent(Decimal("1.00"), "usd", {}, "k")


def test_retrieve_and_cancel(monkeypatch):
    monkeypatch.setattr(
        stripe.PaymentIntent, "retrieve", MagicMock(return_value={"id": "pi_3", "client_secret": "c", "status": "succeeded"})
    )
    cancel = MagicMock(return_value={"id": "pi_3", "status": "canceled"})
    monkeypatch.setattr(stripe.PaymentIntent, "cancel", cancel)
    gateway = StripeGateway(api_key="sk_test_x")

    assert gateway.get_payment_intent("pi_3").status == "succeeded"
    gateway.cancel_payment_intent("pi_3")
    assert cancel.call_args.args[0] == "pi_3"


def test_non_utf8_webhook_payload_is_signature_error():
    with pytest.raises(stripe.SignatureVerificationError):
        StripeGateway(api_key="sk_test_x").verify_signature(b"\xff\xfe{", "t=1,v1=abc", "whsec_test")
