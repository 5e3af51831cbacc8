# agromarket/api/deps.py
from functools import lru_cache

from agromarket.services.lock_service import LockService
from agromarket.services.notification_service import NotificationService
from agromarket.services.payment_gateway import StripeGateway


#klienci zewnetrzni tworzeni raz na proces, w testach podmieniani przez dependency_overrides
@lru_cache
def get_gateway() -> StripeGateway:
    return StripeGateway()


@lru_cache
def get_lock_service() -> LockService:
    return LockService()


@lru_cache
def get_notifier() -> NotificationService:
    return NotificationService()
