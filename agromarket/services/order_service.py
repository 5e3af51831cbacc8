# agromarket/services/order_service.py
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from agromarket.data.models.order import OrderModel
from agromarket.domain.errors import CheckoutError, InvalidPaymentState, OrderNotFound
from agromarket.repos.order_repo import OrderRepo
from agromarket.repos.payment_repo import PaymentRepo
from agromarket.repos.product_repo import ProductRepo
from agromarket.services.payment_gateway import StripeGateway
from agromarket.utils.settings import PENDING_ORDER_TTL_SECONDS
from agromarket.utils.logging import get_logger

logger = get_logger(__name__)


class OrderService:
    """
    Serwis odpowiedzialny za domenę zamówień po checkoucie.
    Zamowienia powstaja tylko w OrderConverter, tutaj odczyt i anulowanie.
    """

    def __init__(self, db: Session, gateway: StripeGateway | None = None):
        self.db = db
        self.gateway = gateway
        self.repo = OrderRepo(db)
        self.payments = PaymentRepo(db)
        self.products = ProductRepo(db)

    def _to_out(self, order: OrderModel) -> Dict[str, Any]:
        return {
            "id": order.id,
            "buyer_id": order.buyer_id,
            "seller_id": order.seller_id,
            "delivery_address": order.delivery_address,
            "notes": order.notes,
            "payment_method": order.payment_method,
            "order_status": order.order_status,
            "payment_status": order.payment_status,
            "total": order.total,
            "created_at": order.created_at,
            "lines": order.lines,
            "payment": self.payments.latest_for_order(order.id),
        }

    def get_order(self, order_id: int, user_id: int) -> Dict[str, Any]:
        """
        Use Case: Pobranie zamówienia (Query) - kupujacy albo sprzedawca.
        """
        order = self.repo.get_order(order_id)

        if not order:
            raise OrderNotFound("Zamówienie nie istnieje")

        if user_id not in (order.buyer_id, order.seller_id):
            raise PermissionError("Brak dostępu do zamówienia")

        return self._to_out(order)

    def list_orders(self, user_id: int, role: str = "purchases") -> List[Dict[str, Any]]:
        if role == "received":
            orders = self.repo.list_for_seller(user_id)
        else:
            orders = self.repo.list_for_buyer(user_id)
        return [self._to_out(o) for o in orders]

    def cancel_order(self, order_id: int, buyer_id: int) -> Dict[str, Any]:
        """
        Use Case: jawne anulowanie zamowienia pending i zwrot stocku.
        Najpierw anulujemy intent w bramce - jesli sie nie uda, nic nie zmieniamy.
        """
        order = self.repo.get_order(order_id)
        if not order:
            raise OrderNotFound("Zamówienie nie istnieje")
        if order.buyer_id != buyer_id:
            raise PermissionError("Brak dostępu do zamówienia")

        self._cancel(order)
        return self._to_out(self.repo.get_order(order_id))

    def _cancel(self, order: OrderModel) -> None:
        if order.order_status != "pending":
            raise InvalidPaymentState(f"Zamowienie w stanie {order.order_status} nie moze byc anulowane")

        payment = self.payments.latest_for_order(order.id)
        if payment is not None and payment.status == "paid":
            raise InvalidPaymentState("Zamowienie jest juz oplacone")

        reference = None
        if payment is not None and payment.status == "pending" and payment.gateway_reference:
            reference = payment.gateway_reference
            if self.gateway is None:
                raise InvalidPaymentState("Brak bramki do anulowania platnosci")
            #GatewayError leci dalej (502), stan w bazie bez zmian
            self.gateway.cancel_payment_intent(reference)

        siblings = [p.order_id for p in self.payments.get_by_reference(reference)] if reference else []
        try:
            #zamowienia przed platnosciami, w kolejnosci id - jak w rekoncyliacji
            self.repo.lock_orders([order.id, *siblings])
            if not self.repo.cancel_if_pending(order.id):
                raise InvalidPaymentState("Zamowienie zmienilo stan, odswiez i sprobuj ponownie")

            if payment is not None and payment.status == "pending":
                if reference:
                    #intent jest wspolny dla checkoutu - anulowanie obejmuje zamowienia rodzenstwa
                    self.payments.transition_by_reference(reference, "canceled")
                    self.repo.update_statuses(siblings, payment_status="canceled")
                else:
                    self.payments.transition_by_id(payment.id, "canceled")
                    self.repo.update_statuses([order.id], payment_status="canceled")

            for line in self.repo.get_lines([order.id]):
                self.products.restore_stock(line.product_id, line.quantity)

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Zamowienie {order.id} anulowane, stock przywrocony")

    def release_abandoned_orders(self, now: datetime | None = None) -> int:
        """
        Anuluje zamowienia pending starsze niz PENDING_ORDER_TTL_SECONDS.
        0 = polityka wylaczona.
        """
        if PENDING_ORDER_TTL_SECONDS <= 0:
            return 0

        cutoff = (now or datetime.now(timezone.utc)) - timedelta(seconds=PENDING_ORDER_TTL_SECONDS)
        stale = self.repo.list_stale_pending(cutoff)
        logger.info(f"Znaleziono {len(stale)} porzuconych zamowien (starszych niz {cutoff})")

        released = 0
        for order in stale:
            try:
                self._cancel(order)
                released += 1
            except CheckoutError as e:
                logger.warning(f"Nie zwolniono zamowienia {order.id}: {e}")
        return released
