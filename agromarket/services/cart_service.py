from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Any, List
from sqlalchemy.orm import Session
from agromarket.data.models.cart import CartModel
from agromarket.data.models.cart_item import CartItemModel
from agromarket.repos.cart_repo import CartRepo
from agromarket.repos.product_repo import ProductRepo
from agromarket.utils.settings import CART_MAX_QUANTITY
from agromarket.utils.logging import get_logger

logger = get_logger(__name__)


class CartService:
    """
    Prosta implementacja cqrs i proste use case dla domeny cart
    commands (add, update, remove, clear) modyfikuja stan
    query (get, stats) tylko odczyt
    koszyk jest trzymany w bazie per kupujacy, nie w pamieci procesu
    """

    def __init__(self, db: Session):
        self.repo = CartRepo(db)
        self.products = ProductRepo(db)

    #query - odczyt
    def get_cart(self, user_id: int) -> Dict[str, Any]:
        cart = self.repo.get_cart_by_user(user_id)

        if not cart:
            return {
                "cart_id": None,
                "user_id": user_id,
                "items": [],
                "total_items": 0,
                "total_price": Decimal("0.00"),
                "version": 0,
                "updated_at": None,
            }

        items = self.repo.get_cart_items(cart.id)
        products = self.products.get_products(i.product_id for i in items)

        out: List[Dict[str, Any]] = []
        for i in items:
            p = products.get(i.product_id)
            price = p.price if p else None
            available = bool(
                p and p.deleted_at is None and p.available and p.stock >= i.quantity
            )
            out.append(
                {
                    "product_id": i.product_id,
                    "name": p.name if p else None,
                    "quantity": i.quantity,
                    "unit_price": price,
                    "unit_price_snapshot": i.unit_price_snapshot,
                    "line_total": (price or i.unit_price_snapshot or Decimal("0.00")) * i.quantity,
                    "available": available,
                    "stock": p.stock if p else 0,
                }
            )

        #dict przyksztalcany w jsona
        return {
            "cart_id": cart.id,
            "user_id": cart.user_id,
            "items": out,
            "total_items": sum(i["quantity"] for i in out),
            "total_price": sum((i["line_total"] for i in out), Decimal("0.00")),
            "version": cart.version,
            "updated_at": cart.updated_at,
        }

    def get_stats(self, user_id: int) -> Dict[str, Any]:
        cart = self.get_cart(user_id)
        unique = len(cart["items"])
        available = sum(1 for i in cart["items"] if i["available"])
        return {
            "total_items": cart["total_items"],
            "total_price": cart["total_price"],
            "unique_products": unique,
            "available_products": available,
            "unavailable_products": unique - available,
            "availability_percentage": (available / unique) * 100 if unique else 0.0,
            "updated_at": cart["updated_at"],
        }

    #commands
    def _get_or_create_cart(self, user_id: int) -> CartModel:
        existing = self.repo.get_cart_by_user(user_id)
        if existing:
            return existing

        created = self.repo.create_cart(CartModel(user_id=user_id, version=1))
        logger.info(f"Utworzono nowy koszyk {created.id} dla użytkownika {user_id}")
        return created

    def _bump_version(self, cart: CartModel) -> None:
        # Optimistic locking
        # np w bazie update set version 2 where id 1 and version 1
        rowcount = self.repo.update_cart_version(
            cart_id=cart.id,
            old_version=cart.version,
            new_data={"version": cart.version + 1},
        )

        if rowcount == 0: #jesli tj 0 rows affected
            self.repo.rollback()
            raise RuntimeError(
                "Konflikt wspolbieznosci - koszyk zostal zmodyfikowany przez inna operacje"
            )

        self.repo.commit()

    def add_product(self, user_id: int, product_id: int, quantity: int) -> Dict[str, Any]:

        # Walidacje
        if quantity <= 0:
            raise ValueError("Ilosc musi być wieksza niz 0")

        product = self.products.get_product(product_id)
        if not product or product.deleted_at is not None:
            raise ValueError("Produkt nie istnieje")

        if not product.available:
            raise ValueError("Produkt jest niedostepny")

        cart = self._get_or_create_cart(user_id)

        existing_item = self.repo.get_cart_item(cart.id, product_id)
        new_quantity = quantity + (existing_item.quantity if existing_item else 0)

        if new_quantity > CART_MAX_QUANTITY:
            raise ValueError(f"Maksymalna ilosc produktu w koszyku to {CART_MAX_QUANTITY}")

        if new_quantity > product.stock:
            raise ValueError(f"Niewystarczajacy stock (dostepne: {product.stock})")

        if existing_item:
            logger.info(
                f"Produkt {product_id} już jest w koszyku, zwiekszam ilosc "
                f"z {existing_item.quantity} do {new_quantity}"
            )
            existing_item.quantity = new_quantity
            existing_item.unit_price_snapshot = product.price  # update ceny
            self.repo.add_cart_item(existing_item)
        else:
            logger.info(f"Dodaje nowy produkt {product_id} do koszyka {cart.id}")
            self.repo.add_cart_item(
                CartItemModel(
                    cart_id=cart.id,
                    product_id=product_id,
                    quantity=quantity,
                    unit_price_snapshot=product.price,
                )
            )

        self._bump_version(cart)
        return self.get_cart(user_id)

    def update_quantity(self, user_id: int, product_id: int, quantity: int) -> Dict[str, Any]:
        if quantity <= 0 or quantity > CART_MAX_QUANTITY:
            raise ValueError(f"Ilosc musi byc z zakresu 1..{CART_MAX_QUANTITY}")

        cart = self.repo.get_cart_by_user(user_id)
        item = self.repo.get_cart_item(cart.id, product_id) if cart else None
        if not item:
            raise ValueError("Produkt nie znajduje sie w koszyku")

        product = self.products.get_product(product_id)
        if product and quantity > product.stock:
            raise ValueError(f"Niewystarczajacy stock (dostepne: {product.stock})")

        item.quantity = quantity
        self.repo.add_cart_item(item)
        self._bump_version(cart)

        logger.info(f"Zmieniono ilosc produktu {product_id} w koszyku {cart.id} na {quantity}")
        return self.get_cart(user_id)

    def remove_product(self, user_id: int, product_id: int) -> Dict[str, Any]:
        cart = self.repo.get_cart_by_user(user_id)
        if not cart:
            raise ValueError("Koszyk nie istnieje")

        logger.info(f"Usuwanie produktu {product_id} z koszyka {cart.id}")

        if self.repo.delete_cart_item(cart.id, product_id) == 0:
            self.repo.rollback()
            raise ValueError("Produkt nie znajduje sie w koszyku")

        self._bump_version(cart)
        return self.get_cart(user_id)

    def clear_cart(self, user_id: int) -> Dict[str, Any]:
        cart = self.repo.get_cart_by_user(user_id)
        if cart:
            removed = self.repo.clear_items(cart.id)
            self._bump_version(cart)
            logger.info(f"Wyczyszczono koszyk {cart.id} ({removed} pozycji)")
        return self.get_cart(user_id)
