from decimal import Decimal

import pytest

from agromarket.services.cart_service import CartService

BUYER_ID = 1


def test_get_cart_without_cart_returns_empty(db, catalog):
    cart = CartService(db).get_cart(BUYER_ID)

    assert cart["cart_id"] is None
    assert cart["items"] == []
    assert cart["total_price"] == Decimal("0.00")


def test_add_product_creates_cart_and_merges_quantity(db, catalog):
    svc = CartService(db)

    svc.add_product(BUYER_ID, catalog["tomatoes"], 1)
    cart = svc.add_product(BUYER_ID, catalog["tomatoes"], 2)

    assert len(cart["items"]) == 1
    assert cart["items"][0]["quantity"] == 3
    assert cart["items"][0]["unit_price_snapshot"] == Decimal("4.50")
    assert cart["total_price"] == Decimal("13.50")
    assert cart["version"] == 3


def test_add_product_rejects_more_than_stock(db, catalog):
    with pytest.raises(ValueError):
        CartService(db).add_product(BUYER_ID, catalog["tomatoes"], 6)


def test_add_unknown_product(db, catalog):
    with pytest.raises(ValueError):
        CartService(db).add_product(BUYER_ID, 999, 1)


def test_update_remove_and_clear(db, catalog):
    svc = CartService(db)
    svc.add_product(BUYER_ID, catalog["tomatoes"], 1)
    svc.add_product(BUYER_ID, catalog["apples"], 1)

    cart = svc.update_quantity(BUYER_ID, catalog["apples"], 4)
    assert {i["product_id"]: i["quantity"] for i in cart["items"]}[catalog["apples"]] == 4

    cart = svc.remove_product(BUYER_ID, catalog["tomatoes"])
    assert [i["product_id"] for i in cart["items"]] == [catalog["apples"]]

    with pytest.raises(ValueError):
        svc.remove_product(BUYER_ID, catalog["tomatoes"])

    cart = svc.clear_cart(BUYER_ID)
    assert cart["items"] == []


def test_stats_count_unavailable_items(db, catalog, set_product):
    svc = CartService(db)
    svc.add_product(BUYER_ID, catalog["tomatoes"], 2)
    svc.add_product(BUYER_ID, catalog["apples"], 1)
    set_product(catalog["apples"], stock=0)

    stats = svc.get_stats(BUYER_ID)

    assert stats["unique_products"] == 2
    assert stats["available_products"] == 1
    assert stats["unavailable_products"] == 1
    assert stats["availability_percentage"] == 50.0
