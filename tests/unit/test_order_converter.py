import threading
from decimal import Decimal

import pytest

from agromarket.data.database import SessionLocal
from agromarket.data.models import CartItemModel, OrderLineModel, OrderModel, PaymentModel
from agromarket.domain.errors import InvalidPaymentState, StockConflict, TransactionConflict, ValidationStale
from agromarket.repos.payment_repo import PaymentRepo
from agromarket.services.cart_validator import CartValidator
from agromarket.services.order_converter import OrderConverter

BUYER_ID = 1
ADDRESS = "ul. Polna 12, 00-001 Warszawa"


def _convert(db, method="card", clear_cart=False):
    validation = CartValidator(db).validate(BUYER_ID)
    return validation, OrderConverter(db).convert(BUYER_ID, validation, ADDRESS, "", method, clear_cart=clear_cart)


def test_one_order_per_seller_with_pending_payment(db, catalog, fill_cart, stock_of, payments_of):
    fill_cart(BUYER_ID, {catalog["tomatoes"]: 2, catalog["cucumbers"]: 1, catalog["apples"]: 3})

    _, result = _convert(db)

    assert result.success is True
    assert len(result.order_ids) == 2
    assert result.total == Decimal("18.75")

    orders = db.query(OrderModel).order_by(OrderModel.id).all()
    assert [o.seller_id for o in orders] == [2, 3]
    assert [o.total for o in orders] == [Decimal("12.00"), Decimal("6.75")]
    assert all(o.order_status == "pending" and o.payment_status == "pending" for o in orders)

    for order in orders:
        payments = payments_of(order.id)
        assert len(payments) == 1
        assert payments[0].status == "pending"
        assert payments[0].amount == order.total
        assert payments[0].gateway == "stripe"

    assert stock_of(catalog["tomatoes"]) == 3
    assert stock_of(catalog["cucumbers"]) == 9
    assert stock_of(catalog["apples"]) == 2


def test_cash_payment_has_no_gateway_and_cart_cleared(db, catalog, fill_cart, count_rows, payments_of):
    fill_cart(BUYER_ID, {catalog["tomatoes"]: 1})

    _, result = _convert(db, method="cash", clear_cart=True)

    assert payments_of(result.order_ids[0])[0].gateway is None
    assert count_rows(CartItemModel) == 0


def test_card_conversion_leaves_cart_until_cleared(db, catalog, fill_cart, count_rows):
    fill_cart(BUYER_ID, {catalog["tomatoes"]: 1})

    validation, _ = _convert(db)
    assert count_rows(CartItemModel) == 1

    OrderConverter(db).clear_converted_items(BUYER_ID, validation)
    assert count_rows(CartItemModel) == 0


def test_order_lines_keep_price_at_checkout(db, catalog, fill_cart, set_product):
    fill_cart(BUYER_ID, {catalog["tomatoes"]: 2})
    set_product(catalog["tomatoes"], price=Decimal("5.00"))

    _, result = _convert(db)

    line = db.query(OrderLineModel).filter(OrderLineModel.order_id == result.order_ids[0]).one()
    assert line.unit_price == Decimal("5.00")
    assert line.line_total == Decimal("10.00")

    set_product(catalog["tomatoes"], price=Decimal("9.99"))
    db.expire_all()
    assert db.get(OrderLineModel, line.id).unit_price == Decimal("5.00")


def test_multi_seller_checkout_is_all_or_nothing(db, catalog, fill_cart, set_product, stock_of, count_rows):
    fill_cart(BUYER_ID, {catalog["tomatoes"]: 2, catalog["apples"]: 2})
    validation = CartValidator(db).validate(BUYER_ID)
    #inny kupujacy wykupil jablka po walidacji
    set_product(catalog["apples"], stock=1)

    with pytest.raises(StockConflict) as exc:
        OrderConverter(db).convert(BUYER_ID, validation, ADDRESS, "", "card")

    assert exc.value.details["errors"][0]["product_id"] == catalog["apples"]
    assert stock_of(catalog["tomatoes"]) == 5
    assert stock_of(catalog["apples"]) == 1
    assert count_rows(OrderModel) == 0
    assert count_rows(PaymentModel) == 0


def test_fault_injection_rolls_back_everything(db, catalog, fill_cart, stock_of, count_rows, monkeypatch):
    fill_cart(BUYER_ID, {catalog["tomatoes"]: 2, catalog["apples"]: 1})
    validation = CartValidator(db).validate(BUYER_ID)

    def boom(self, payment):
        raise RuntimeError("awaria bazy w trakcie zapisu")

    monkeypatch.setattr(PaymentRepo, "add_payment", boom)

    with pytest.raises(RuntimeError):
        OrderConverter(db).convert(BUYER_ID, validation, ADDRESS, "", "card")

    assert stock_of(catalog["tomatoes"]) == 5
    assert stock_of(catalog["apples"]) == 5
    assert count_rows(OrderModel) == 0
    assert count_rows(OrderLineModel) == 0


def test_price_change_after_validation_is_stale(db, catalog, fill_cart, set_product, count_rows):
    fill_cart(BUYER_ID, {catalog["tomatoes"]: 1})
    validation = CartValidator(db).validate(BUYER_ID)
    set_product(catalog["tomatoes"], price=Decimal("6.00"))

    with pytest.raises(ValidationStale):
        OrderConverter(db).convert(BUYER_ID, validation, ADDRESS, "", "card")

    assert count_rows(OrderModel) == 0


def test_invalid_validation_is_rejected(db, catalog):
    validation = CartValidator(db).validate(BUYER_ID)

    with pytest.raises(ValidationStale):
        OrderConverter(db).convert(BUYER_ID, validation, ADDRESS, "", "card")


def test_concurrent_checkouts_never_oversell(db, catalog, fill_cart, set_product, stock_of, count_rows):
    buyers = [1, 4]
    for buyer in buyers:
        fill_cart(buyer, {catalog["tomatoes"]: 1})
    set_product(catalog["tomatoes"], stock=1)

    validations = {}
    for buyer in buyers:
        session = SessionLocal()
        try:
            validations[buyer] = CartValidator(session).validate(buyer)
        finally:
            session.close()

    barrier = threading.Barrier(len(buyers))
    outcomes = []

    def run(buyer):
        session = SessionLocal()
        try:
            barrier.wait()
            OrderConverter(session).convert(buyer, validations[buyer], ADDRESS, "", "card")
            outcomes.append("ok")
        except (StockConflict, TransactionConflict) as e:
            outcomes.append(type(e).__name__)
        finally:
            session.close()

    threads = [threading.Thread(target=run, args=(b,)) for b in buyers]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 1
    assert stock_of(catalog["tomatoes"]) == 0
    assert count_rows(OrderModel) == 1


def test_revert_restores_stock_and_removes_orders(db, catalog, fill_cart, stock_of, count_rows):
    fill_cart(BUYER_ID, {catalog["tomatoes"]: 3, catalog["apples"]: 1})
    _, result = _convert(db)

    OrderConverter(db).revert(result.order_ids)

    assert stock_of(catalog["tomatoes"]) == 5
    assert stock_of(catalog["apples"]) == 5
    assert count_rows(OrderModel) == 0
    assert count_rows(PaymentModel) == 0
    assert count_rows(OrderLineModel) == 0


def test_revert_refuses_settled_payments(db, catalog, fill_cart, stock_of):
    fill_cart(BUYER_ID, {catalog["tomatoes"]: 1})
    _, result = _convert(db)
    PaymentRepo(db).transition_by_id(result.payment_ids[0], "paid")
    db.commit()

    with pytest.raises(InvalidPaymentState):
        OrderConverter(db).revert(result.order_ids)

    assert stock_of(catalog["tomatoes"]) == 4
