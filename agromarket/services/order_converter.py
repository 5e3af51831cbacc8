# agromarket/services/order_converter.py
from collections import OrderedDict
from decimal import Decimal
from typing import Dict, Iterable, List

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from agromarket.data.models.order import OrderModel
from agromarket.data.models.order_line import OrderLineModel
from agromarket.data.models.payment import PaymentModel
from agromarket.domain.errors import (
    CheckoutError,
    InvalidPaymentState,
    ProductUnavailable,
    StockConflict,
    TransactionConflict,
    ValidationStale,
)
from agromarket.domain.schemas import CartValidation, ConversionResult, ValidatedLine
from agromarket.repos.cart_repo import CartRepo
from agromarket.repos.order_repo import OrderRepo
from agromarket.repos.payment_repo import PaymentRepo
from agromarket.repos.product_repo import ProductRepo
from agromarket.services.payment_gateway import GATEWAY_NAME
from agromarket.utils.settings import PAYMENT_CURRENCY
from agromarket.utils.logging import get_logger

logger = get_logger(__name__)


class OrderConverter:
    """
    Zamienia zwalidowany koszyk w zamowienia (jedno na sprzedawce).

    Wszystkie partycje sprzedawcow ida w JEDNEJ transakcji:
    1. SELECT ... FOR UPDATE na produktach
    2. sprawdzenie dostepnosci i ceny z walidacji
    3. warunkowy decrement stocku (stock >= ilosc)
    4. insert order + order_lines + payment (pending)
    Dowolny blad -> rollback calosci, nie ma czesciowych zamowien.
    """

    def __init__(self, db: Session, currency: str = PAYMENT_CURRENCY):
        self.db = db
        self.currency = currency
        self.products = ProductRepo(db)
        self.orders = OrderRepo(db)
        self.payments = PaymentRepo(db)
        self.carts = CartRepo(db)

    def convert(
        self,
        buyer_id: int,
        validation: CartValidation,
        delivery_address: str,
        notes: str,
        payment_method: str,
        clear_cart: bool = False,
    ) -> ConversionResult:
        if not validation.valid or not validation.lines:
            raise ValidationStale("Koszyk musi byc zwalidowany przed utworzeniem zamowienia")

        try:
            result = self._convert(buyer_id, validation.lines, delivery_address, notes, payment_method)
            if clear_cart:
                self.carts.delete_items_if_unchanged((l.item_id, l.quantity) for l in validation.lines)
            self.db.commit()
        except CheckoutError:
            self.db.rollback()
            raise
        except OperationalError as e:
            #lock timeout / deadlock / serialization failure
            self.db.rollback()
            logger.warning(f"Konflikt transakcji przy checkout kupujacego {buyer_id}: {e}")
            raise TransactionConflict("Konflikt transakcji, sprobuj ponownie") from e
        except Exception:
            self.db.rollback()
            logger.exception(f"Checkout kupujacego {buyer_id} wycofany")
            raise

        logger.info(
            f"Utworzono zamowienia {result.order_ids} dla kupujacego {buyer_id}, "
            f"metoda {payment_method}, suma {result.total}"
        )
        return result

    def _convert(
        self,
        buyer_id: int,
        lines: List[ValidatedLine],
        delivery_address: str,
        notes: str,
        payment_method: str,
    ) -> ConversionResult:
        ordered = sorted(lines, key=lambda l: l.product_id)
        locked = self.products.lock_products(l.product_id for l in ordered)

        for line in ordered:
            product = locked.get(line.product_id)

            if product is None or product.deleted_at is not None or not product.available:
                raise ProductUnavailable(
                    "Produkt jest niedostepny",
                    {"errors": [{"product_id": line.product_id, "code": "PRODUCT_UNAVAILABLE"}]},
                )

            if Decimal(product.price) != line.unit_price or product.seller_id != line.seller_id:
                raise ValidationStale(
                    "Katalog zmienil sie od walidacji, zwaliduj koszyk ponownie",
                    {"errors": [{"product_id": line.product_id, "code": "VALIDATION_STALE"}]},
                )

            if not self.products.decrement_stock(product.id, line.quantity):
                raise StockConflict(
                    "Niewystarczajacy stock",
                    {
                        "errors": [
                            {
                                "product_id": line.product_id,
                                "name": line.name,
                                "code": "INSUFFICIENT_STOCK",
                                "requested": line.quantity,
                                "available": product.stock,
                            }
                        ]
                    },
                )

        #partycje po sprzedawcy, w kolejnosci z koszyka
        partitions: Dict[int, List[ValidatedLine]] = OrderedDict()
        for line in lines:
            partitions.setdefault(line.seller_id, []).append(line)

        order_ids: List[int] = []
        payment_ids: List[int] = []
        grand_total = Decimal("0.00")

        for seller_id, seller_lines in partitions.items():
            total = sum((l.line_total for l in seller_lines), Decimal("0.00"))
            order = self.orders.add_order(
                OrderModel(
                    buyer_id=buyer_id,
                    seller_id=seller_id,
                    delivery_address=delivery_address,
                    notes=notes or "",
                    payment_method=payment_method,
                    order_status="pending",
                    payment_status="pending",
                    total=total,
                )
            )

            for l in seller_lines:
                self.orders.add_line(
                    OrderLineModel(
                        order_id=order.id,
                        product_id=l.product_id,
                        product_name=l.name or "",
                        quantity=l.quantity,
                        unit_price=l.unit_price,
                        line_total=l.line_total,
                    )
                )

            payment = self.payments.add_payment(
                PaymentModel(
                    order_id=order.id,
                    buyer_id=buyer_id,
                    amount=total,
                    currency=self.currency,
                    method=payment_method,
                    gateway=None if payment_method == "cash" else GATEWAY_NAME,
                    status="pending",
                )
            )

            order_ids.append(order.id)
            payment_ids.append(payment.id)
            grand_total += total

        self.db.flush()
        return ConversionResult(success=True, order_ids=order_ids, payment_ids=payment_ids, total=grand_total)

    def clear_converted_items(self, buyer_id: int, validation: CartValidation) -> int:
        """Usuwa z koszyka tylko pozycje, ktore trafily do zamowien."""
        try:
            removed = self.carts.delete_items_if_unchanged(
                (l.item_id, l.quantity) for l in validation.lines
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        logger.info(f"Usunieto {removed} pozycji z koszyka kupujacego {buyer_id}")
        return removed

    def revert(self, order_ids: Iterable[int]) -> None:
        """
        Kompensacja checkoutu, ktory nie dostal sesji platnosci:
        przywraca stock i usuwa platnosci, linie i zamowienia w jednej transakcji.
        """
        ids = list(order_ids)
        try:
            for order_id in ids:
                payment = self.payments.latest_for_order(order_id)
                if payment is not None and payment.status != "pending":
                    raise InvalidPaymentState(f"Zamowienie {order_id} ma juz platnosc {payment.status}")

            for line in self.orders.get_lines(ids):
                self.products.restore_stock(line.product_id, line.quantity)

            self.payments.delete_for_orders(ids)
            self.orders.delete_orders(ids)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.warning(f"Checkout wycofany, usunieto zamowienia {ids} i przywrocono stock")
