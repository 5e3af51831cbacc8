# agromarket/celery_worker.py
from celery import Celery

from agromarket.utils.settings import (
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
    PENDING_ORDER_TTL_SECONDS,
)

celery_app = Celery(
    "agromarket",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# WAŻNE: Explicite importuj taski, żeby Celery je zarejestrował
celery_app.conf.imports = (
    "agromarket.tasks.release",
    "agromarket.services.notification_service",
)

# sprzatanie porzuconych zamowien tylko gdy polityka jest wlaczona
if PENDING_ORDER_TTL_SECONDS > 0:
    celery_app.conf.beat_schedule = {
        "release-abandoned-orders-every-minute": {
            "task": "agromarket.tasks.release.release_abandoned_orders_task",
            "schedule": 60.0,  # co 60 sekund
        },
    }

celery_app.conf.timezone = "UTC"
