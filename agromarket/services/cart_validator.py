# agromarket/services/cart_validator.py
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from agromarket.domain.schemas import CartValidation, ValidatedLine
from agromarket.repos.cart_repo import CartRepo
from agromarket.repos.product_repo import ProductRepo
from agromarket.utils.settings import CART_MAX_QUANTITY
from agromarket.utils.logging import get_logger

logger = get_logger(__name__)


class CartValidator:
    """
    Ponowne sprawdzenie koszyka wzgledem aktualnego katalogu przed checkoutem.

    - brak produktu / usuniety / niedostepny / za maly stock / za duza ilosc -> error
    - zmiana ceny od dodania do koszyka -> warning, checkout idzie po cenie aktualnej
    - tylko odczyt, wielokrotne wywolanie niczego nie zmienia
    """

    def __init__(self, db: Session):
        self.carts = CartRepo(db)
        self.products = ProductRepo(db)

    def validate(self, buyer_id: int) -> CartValidation:
        cart = self.carts.get_cart_by_user(buyer_id)
        items = self.carts.get_cart_items(cart.id) if cart else []

        if not items:
            return CartValidation(
                valid=False,
                errors=[{"code": "EMPTY_CART", "message": "Koszyk jest pusty"}],
            )

        products = self.products.get_products(i.product_id for i in items)
        errors: List[Dict[str, Any]] = []
        warnings: List[Dict[str, Any]] = []
        lines: List[ValidatedLine] = []

        for item in items:
            product = products.get(item.product_id)

            if product is None or product.deleted_at is not None:
                errors.append(
                    {
                        "product_id": item.product_id,
                        "code": "PRODUCT_NOT_FOUND",
                        "message": "Produkt nie istnieje",
                        "requested": item.quantity,
                    }
                )
                continue

            price = Decimal(product.price)
            line = ValidatedLine(
                item_id=item.id,
                product_id=product.id,
                seller_id=product.seller_id,
                name=product.name,
                quantity=item.quantity,
                unit_price=price,
                line_total=price * item.quantity,
                available=False,
            )

            if not product.available:
                errors.append(
                    {
                        "product_id": product.id,
                        "name": product.name,
                        "code": "PRODUCT_UNAVAILABLE",
                        "message": f"Produkt {product.name} jest niedostepny",
                        "requested": item.quantity,
                    }
                )
            elif item.quantity > CART_MAX_QUANTITY:
                errors.append(
                    {
                        "product_id": product.id,
                        "name": product.name,
                        "code": "QUANTITY_LIMIT",
                        "message": f"Maksymalna ilosc to {CART_MAX_QUANTITY}",
                        "requested": item.quantity,
                    }
                )
            elif product.stock < item.quantity:
                errors.append(
                    {
                        "product_id": product.id,
                        "name": product.name,
                        "code": "INSUFFICIENT_STOCK",
                        "message": f"Niewystarczajacy stock dla {product.name}",
                        "requested": item.quantity,
                        "available": product.stock,
                    }
                )
            else:
                line.available = True

            snapshot = item.unit_price_snapshot
            if snapshot is not None and Decimal(snapshot) != price:
                warnings.append(
                    {
                        "product_id": product.id,
                        "name": product.name,
                        "code": "PRICE_CHANGED",
                        "message": f"Cena {product.name} zmienila sie z {snapshot} na {price}",
                        "old_price": Decimal(snapshot),
                        "new_price": price,
                    }
                )

            lines.append(line)

        result = CartValidation(valid=not errors, errors=errors, warnings=warnings, lines=lines)
        logger.info(
            f"Walidacja koszyka kupujacego {buyer_id}: valid={result.valid} "
            f"errors={len(errors)} warnings={len(warnings)}"
        )
        return result
