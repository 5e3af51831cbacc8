import os
import tempfile

#baza testowa musi byc ustawiona zanim agromarket zaimportuje settings
_DB_DIR = tempfile.mkdtemp(prefix="agromarket-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["STRIPE_WEBHOOK_SECRET"] = ""
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["CONFIRM_VERIFY_WITH_GATEWAY"] = "true"
os.environ["PENDING_ORDER_TTL_SECONDS"] = "0"

from decimal import Decimal
from typing import Any, Dict, Generator, List

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from agromarket.data.database import Base, SessionLocal, engine
from agromarket.data.models import (
    OrderModel,
    PaymentModel,
    ProductModel,
    UserModel,
)
from agromarket.domain.errors import GatewayError
from agromarket.services.cart_service import CartService
from agromarket.services.payment_gateway import GatewayIntent

BUYER_ID = 1
SELLER_A = 2
SELLER_B = 3
OTHER_BUYER = 4


# automatyczne markery wedlug katalogu testow
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)


class FakeGateway:
    """Bramka w pamieci: intenty pi_test_N, konfigurowalne bledy i statusy."""

    name = "stripe"

    def __init__(self):
        self.created: List[Dict[str, Any]] = []
        self.canceled: List[str] = []
        self.statuses: Dict[str, str] = {}
        self.fail_create = False
        self.fail_cancel = False
        self._seq = 0
        self._by_key: Dict[str, GatewayIntent] = {}

    def create_payment_intent(self, amount, currency, metadata, idempotency_key):
        if self.fail_create:
            raise GatewayError("Nie udalo sie zainicjowac platnosci, sprobuj ponownie pozniej")
        if idempotency_key in self._by_key:
            return self._by_key[idempotency_key]
        self._seq += 1
        intent = GatewayIntent(
            id=f"pi_test_{self._seq}",
            client_secret=f"pi_test_{self._seq}_secret",
            status="requires_payment_method",
        )
        self._by_key[idempotency_key] = intent
        self.created.append(
            {
                "id": intent.id,
                "amount": amount,
                "currency": currency,
                "metadata": metadata,
                "idempotency_key": idempotency_key,
            }
        )
        return intent

    def get_payment_intent(self, intent_id):
        return GatewayIntent(
            id=intent_id,
            client_secret=f"{intent_id}_secret",
            status=self.statuses.get(intent_id, "requires_payment_method"),
        )

    def cancel_payment_intent(self, intent_id):
        if self.fail_cancel:
            raise GatewayError("Nie udalo sie anulowac platnosci")
        self.canceled.append(intent_id)
        self.statuses[intent_id] = "canceled"

    def verify_signature(self, payload, signature, secret):
        return None


class RecordingNotifier:
    def __init__(self):
        self.notifications: List[Dict[str, Any]] = []
        self.emails: List[Dict[str, Any]] = []
        self.fail = False

    def notify(self, user_id, title, message, metadata=None):
        if self.fail:
            raise RuntimeError("broker niedostepny")
        self.notifications.append({"user_id": user_id, "title": title, "metadata": metadata or {}})

    def send_order_email(self, to, order_summary):
        if self.fail:
            raise RuntimeError("broker niedostepny")
        self.emails.append({"to": to, "order_id": order_summary["order_id"]})


class InMemoryLock:
    def __init__(self):
        self.locks: Dict[int, str] = {}

    def acquire_checkout_lock(self, buyer_id, token, ttl):
        if buyer_id in self.locks:
            return False
        self.locks[buyer_id] = token
        return True

    def release_checkout_lock(self, buyer_id, token):
        if self.locks.get(buyer_id) == token:
            del self.locks[buyer_id]
            return True
        return False


@pytest.fixture(autouse=True)
def _reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db() -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def catalog(db) -> Dict[str, int]:
    """Kupujacy 1 i 4, sprzedawcy 2 i 3, trzy produkty."""
    db.add_all(
        [
            UserModel(id=BUYER_ID, name="Kupujacy", email="buyer@example.com"),
            UserModel(id=SELLER_A, name="Gospodarstwo A", email="farm-a@example.com"),
            UserModel(id=SELLER_B, name="Gospodarstwo B", email=None),
            UserModel(id=OTHER_BUYER, name="Inny kupujacy", email="other@example.com"),
        ]
    )
    db.flush()
    tomatoes = ProductModel(seller_id=SELLER_A, name="Pomidory", unit="kg", price=Decimal("4.50"), stock=5)
    cucumbers = ProductModel(seller_id=SELLER_A, name="Ogorki", unit="kg", price=Decimal("3.00"), stock=10)
    apples = ProductModel(seller_id=SELLER_B, name="Jablka", unit="kg", price=Decimal("2.25"), stock=5)
    db.add_all([tomatoes, cucumbers, apples])
    db.commit()
    return {"tomatoes": tomatoes.id, "cucumbers": cucumbers.id, "apples": apples.id}


@pytest.fixture
def fill_cart():
    def _fill(buyer_id: int, items: Dict[int, int]):
        session = SessionLocal()
        try:
            svc = CartService(session)
            for product_id, quantity in items.items():
                svc.add_product(buyer_id, product_id, quantity)
        finally:
            session.close()

    return _fill


@pytest.fixture
def set_product():
    """Zmiana katalogu z osobnej sesji (inny proces / inny kupujacy)."""

    def _set(product_id: int, **values):
        session = SessionLocal()
        try:
            product = session.get(ProductModel, product_id)
            for k, v in values.items():
                setattr(product, k, v)
            session.commit()
        finally:
            session.close()

    return _set


@pytest.fixture
def stock_of():
    def _stock(product_id: int) -> int:
        session = SessionLocal()
        try:
            return session.execute(select(ProductModel.stock).where(ProductModel.id == product_id)).scalar_one()
        finally:
            session.close()

    return _stock


@pytest.fixture
def count_rows():
    def _count(model=OrderModel) -> int:
        session = SessionLocal()
        try:
            return session.execute(select(func.count()).select_from(model)).scalar_one()
        finally:
            session.close()

    return _count


@pytest.fixture
def payments_of():
    def _payments(order_id: int) -> List[PaymentModel]:
        session = SessionLocal()
        try:
            return list(
                session.execute(
                    select(PaymentModel).where(PaymentModel.order_id == order_id).order_by(PaymentModel.id)
                ).scalars()
            )
        finally:
            session.close()

    return _payments


@pytest.fixture
def order_of():
    def _order(order_id: int) -> OrderModel:
        session = SessionLocal()
        try:
            return session.get(OrderModel, order_id)
        finally:
            session.close()

    return _order


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def lock() -> InMemoryLock:
    return InMemoryLock()


@pytest.fixture(scope="session")
def app():
    from agromarket.main import app as fastapi_app

    return fastapi_app


@pytest.fixture
def client(app, gateway, notifier, lock) -> Generator[TestClient, None, None]:
    from agromarket.api.deps import get_gateway, get_lock_service, get_notifier

    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_lock_service] = lambda: lock
    app.dependency_overrides[get_notifier] = lambda: notifier
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
