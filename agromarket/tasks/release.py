# agromarket/tasks/release.py
from agromarket.celery_worker import celery_app
from agromarket.data.database import SessionLocal
from agromarket.services.order_service import OrderService
from agromarket.services.payment_gateway import StripeGateway
from agromarket.utils.logging import get_logger

logger = get_logger(__name__)


@celery_app.task(name="agromarket.tasks.release.release_abandoned_orders_task")
def release_abandoned_orders_task():
    logger.info("Release abandoned orders task started")

    db = SessionLocal()
    try:
        released = OrderService(db, gateway=StripeGateway()).release_abandoned_orders()
        logger.info(f"Zwolniono {released} porzuconych zamowien")
        return {"released": released}
    finally:
        db.close()
