# agromarket/services/notification_service.py
from typing import Any, Dict

from agromarket.celery_worker import celery_app
from agromarket.utils.logging import get_logger

logger = get_logger(__name__)


class NotificationService:
    """
    Serwis do wysyłania powiadomień i maili o zamówieniach.
    Używa Celery do asynchronicznego przetwarzania - z punktu widzenia
    checkoutu i rekoncyliacji to fire-and-forget.
    """

    def notify(self, user_id: int, title: str, message: str, metadata: Dict[str, Any] | None = None):
        deliver_notification_task.delay(user_id, title, message, metadata or {})

    def send_order_email(self, to: str, order_summary: Dict[str, Any]):
        send_order_email_task.delay(to, order_summary)


@celery_app.task(name="agromarket.services.notification_service.deliver_notification_task")
def deliver_notification_task(user_id: int, title: str, message: str, metadata: Dict[str, Any]):
    """
    Celery task - doręczenie należy do zewnętrznego serwisu powiadomień,
    tutaj tylko logujemy.
    """
    logger.info(f"[NOTIFICATION] User {user_id}: {title} - {message} {metadata}")
    return {"user_id": user_id, "title": title, "status": "sent"}


@celery_app.task(name="agromarket.services.notification_service.send_order_email_task")
def send_order_email_task(to: str, order_summary: Dict[str, Any]):
    logger.info(f"[EMAIL] {to}: order {order_summary.get('order_id')} total {order_summary.get('total')}")
    return {"to": to, "order_id": order_summary.get("order_id"), "status": "sent"}
