from datetime import datetime, timedelta, timezone

import pytest

from agromarket.domain.errors import GatewayError, InvalidPaymentState, OrderNotFound
from agromarket.domain.events import decode_event
from agromarket.domain.schemas import CheckoutIn
from agromarket.services import order_service as order_service_module
from agromarket.services.checkout_service import CheckoutService
from agromarket.services.order_service import OrderService
from agromarket.services.payment_reconciler import PaymentReconciler

BUYER_ID = 1
ADDRESS = "ul. Polna 12, 00-001 Warszawa"


@pytest.fixture
def checkout(db, catalog, fill_cart, gateway, lock, notifier):
    def _checkout(method="card"):
        fill_cart(BUYER_ID, {catalog["tomatoes"]: 2, catalog["apples"]: 1})
        return CheckoutService(db, gateway, lock, notifier).checkout(
            BUYER_ID, CheckoutIn(delivery_address=ADDRESS, payment_method=method)
        )

    return _checkout


def test_get_order_for_buyer_and_seller(db, checkout):
    result = checkout()
    svc = OrderService(db)

    as_buyer = svc.get_order(result.order_ids[0], BUYER_ID)
    as_seller = svc.get_order(result.order_ids[0], 2)

    assert as_buyer["id"] == as_seller["id"]
    assert len(as_buyer["lines"]) == 1
    assert as_buyer["payment"].status == "pending"


def test_get_order_of_someone_else(db, checkout):
    result = checkout()

    with pytest.raises(PermissionError):
        OrderService(db).get_order(result.order_ids[0], 3)

    with pytest.raises(OrderNotFound):
        OrderService(db).get_order(999, BUYER_ID)


def test_list_orders_by_role(db, checkout):
    checkout()
    svc = OrderService(db)

    assert len(svc.list_orders(BUYER_ID, "purchases")) == 2
    assert [o["seller_id"] for o in svc.list_orders(3, "received")] == [3]
    assert svc.list_orders(3, "purchases") == []


def test_cancel_card_order_cancels_intent_and_restores_stock(db, checkout, gateway, stock_of, catalog, order_of, payments_of):
    result = checkout()
    ref = result.payment.gateway_reference
    first, sibling = result.order_ids

    out = OrderService(db, gateway).cancel_order(first, BUYER_ID)

    assert out["order_status"] == "canceled"
    assert gateway.canceled == [ref]
    assert stock_of(catalog["tomatoes"]) == 5
    #rodzenstwo: platnosc anulowana, zamowienie dalej pending, stock nie wraca
    assert stock_of(catalog["apples"]) == 4
    assert order_of(sibling).order_status == "pending"
    assert order_of(sibling).payment_status == "canceled"
    assert payments_of(sibling)[-1].status == "canceled"


def test_cancel_gateway_failure_changes_nothing(db, checkout, gateway, stock_of, catalog, order_of):
    result = checkout()
    gateway.fail_cancel = True

    with pytest.raises(GatewayError):
        OrderService(db, gateway).cancel_order(result.order_ids[0], BUYER_ID)

    assert order_of(result.order_ids[0]).order_status == "pending"
    assert stock_of(catalog["tomatoes"]) == 3


def test_cancel_cash_order(db, checkout, gateway, stock_of, catalog, payments_of):
    result = checkout("cash")

    OrderService(db, gateway).cancel_order(result.order_ids[0], BUYER_ID)

    assert gateway.canceled == []
    assert payments_of(result.order_ids[0])[-1].status == "canceled"
    assert stock_of(catalog["tomatoes"]) == 5


def test_cancel_paid_order_is_rejected(db, checkout, gateway, notifier):
    result = checkout()
    PaymentReconciler(db, gateway, notifier).handle_event(
        decode_event(
            {"type": "payment_intent.succeeded", "data": {"object": {"id": result.payment.gateway_reference}}}
        )
    )

    with pytest.raises(InvalidPaymentState):
        OrderService(db, gateway).cancel_order(result.order_ids[0], BUYER_ID)


def test_cancel_by_other_user(db, checkout, gateway):
    result = checkout()

    with pytest.raises(PermissionError):
        OrderService(db, gateway).cancel_order(result.order_ids[0], 4)


def test_release_disabled_by_default(db, checkout, gateway, order_of):
    result = checkout()

    released = OrderService(db, gateway).release_abandoned_orders(datetime.now(timezone.utc) + timedelta(days=1))

    assert released == 0
    assert order_of(result.order_ids[0]).order_status == "pending"


def test_release_abandoned_orders(db, checkout, gateway, stock_of, catalog, order_of, monkeypatch):
    monkeypatch.setattr(order_service_module, "PENDING_ORDER_TTL_SECONDS", 900)
    result = checkout("cash")

    released = OrderService(db, gateway).release_abandoned_orders(datetime.now(timezone.utc) + timedelta(hours=1))

    assert released == 2
    assert all(order_of(i).order_status == "canceled" for i in result.order_ids)
    assert stock_of(catalog["tomatoes"]) == 5
    assert stock_of(catalog["apples"]) == 5
