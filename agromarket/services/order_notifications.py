# agromarket/services/order_notifications.py
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from agromarket.data.models.order import OrderModel
from agromarket.repos.user_repo import UserRepo
from agromarket.services.notification_service import NotificationService
from agromarket.utils.logging import get_logger

logger = get_logger(__name__)


def order_summary(order: OrderModel) -> Dict[str, Any]:
    return {
        "order_id": order.id,
        "buyer_id": order.buyer_id,
        "seller_id": order.seller_id,
        "payment_method": order.payment_method,
        "total": str(order.total),
        "delivery_address": order.delivery_address,
        "items": [
            {
                "product_id": l.product_id,
                "name": l.product_name,
                "quantity": l.quantity,
                "unit_price": str(l.unit_price),
                "line_total": str(l.line_total),
            }
            for l in order.lines
        ],
    }


class OrderNotifications:
    """
    Powiadomienia po zmianie stanu zamowienia.
    Best-effort: blad wysylki jest logowany i nigdy nie cofa zmiany stanu.
    """

    def __init__(self, db: Session, notifier: NotificationService):
        self.users = UserRepo(db)
        self.notifier = notifier

    def _send(self, what: str, fn, *args) -> bool:
        try:
            fn(*args)
            return True
        except Exception:
            logger.exception(f"Nie wyslano powiadomienia ({what})")
            return False

    def payment_completed(self, orders: List[OrderModel]) -> None:
        for order in orders:
            summary = order_summary(order)
            self._send(
                f"buyer {order.buyer_id}",
                self.notifier.notify,
                order.buyer_id,
                "Platnosc przyjeta",
                f"Zamowienie #{order.id} zostalo oplacone ({order.total})",
                {"order_id": order.id, "type": "payment_completed"},
            )
            self._send(
                f"seller {order.seller_id}",
                self.notifier.notify,
                order.seller_id,
                "Nowe oplacone zamowienie",
                f"Zamowienie #{order.id} zostalo oplacone, przygotuj wysylke",
                {"type": "order_paid", **summary},
            )
            self._email_seller(order, summary)
        logger.info(f"Wyslano powiadomienia o platnosci dla zamowien {[o.id for o in orders]}")

    def cash_order_created(self, orders: List[OrderModel]) -> None:
        for order in orders:
            summary = order_summary(order)
            self._send(
                f"seller {order.seller_id}",
                self.notifier.notify,
                order.seller_id,
                "Nowe zamowienie (gotowka)",
                f"Zamowienie #{order.id} na {order.total}, platnosc przy odbiorze",
                {"type": "new_cash_order", **summary},
            )
            self._send(
                f"buyer {order.buyer_id}",
                self.notifier.notify,
                order.buyer_id,
                "Zamowienie przyjete",
                f"Zamowienie #{order.id} czeka na potwierdzenie platnosci gotowka",
                {"order_id": order.id, "type": "order_placed"},
            )
            self._email_seller(order, summary)

    def _email_seller(self, order: OrderModel, summary: Dict[str, Any]) -> None:
        seller = self.users.get_user(order.seller_id)
        if seller is None or not seller.email:
            logger.info(f"Sprzedawca {order.seller_id} bez adresu email, pomijam mail")
            return
        self._send(f"email {seller.email}", self.notifier.send_order_email, seller.email, summary)
