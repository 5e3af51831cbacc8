# agromarket/services/checkout_service.py
import hashlib
import json
import uuid
from contextlib import contextmanager

import redis
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from agromarket.domain.errors import (
    CartValidationFailed,
    CheckoutInProgress,
    IdempotencyMismatch,
    PaymentAlreadySucceeded,
    StockConflict,
    TransactionConflict,
)
from agromarket.domain.schemas import CartValidation, CheckoutIn, CheckoutOut, ConversionResult, PaymentSession
from agromarket.repos.idempotency_repo import IdempotencyRepo
from agromarket.repos.order_repo import OrderRepo
from agromarket.services.cart_validator import CartValidator
from agromarket.services.lock_service import LockService
from agromarket.services.notification_service import NotificationService
from agromarket.services.order_converter import OrderConverter
from agromarket.services.order_notifications import OrderNotifications
from agromarket.services.payment_gateway import StripeGateway
from agromarket.services.payment_initiator import PaymentInitiator
from agromarket.services.payment_reconciler import PaymentReconciler
from agromarket.utils.retry import transaction_retry
from agromarket.utils.settings import CHECKOUT_LOCK_TTL_SECONDS
from agromarket.utils.logging import get_logger

logger = get_logger(__name__)

CHECKOUT_SCOPE = "checkout"


def sha256_json(obj: dict) -> str:
    raw = json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


class CheckoutService:
    """
    Use case: koszyk -> zamowienia -> sesja platnosci.

    1. Idempotency-Key (opcjonalny) - powtorka zwraca zapisana odpowiedz
    2. lock kupujacego w redis - jeden checkout naraz
    3. walidacja -> konwersja (1 retry przy konflikcie) -> inicjacja platnosci
    4. blad bramki -> kompensacja, koszyk zostaje nietkniety
    """

    def __init__(
        self,
        db: Session,
        gateway: StripeGateway,
        lock_service: LockService,
        notifier: NotificationService,
    ):
        self.db = db
        self.lock_service = lock_service
        self.validator = CartValidator(db)
        self.converter = OrderConverter(db)
        self.initiator = PaymentInitiator(db, gateway)
        self.reconciler = PaymentReconciler(db, gateway, notifier)
        self.idempotency = IdempotencyRepo(db)
        self.orders = OrderRepo(db)
        self.notifications = OrderNotifications(db, notifier)

    @contextmanager
    def _buyer_lock(self, buyer_id: int):
        token = uuid.uuid4().hex
        if not self.lock_service.acquire_checkout_lock(buyer_id, token, CHECKOUT_LOCK_TTL_SECONDS):
            raise CheckoutInProgress("Checkout jest juz w toku, sprobuj za chwile")
        try:
            yield
        finally:
            try:
                self.lock_service.release_checkout_lock(buyer_id, token)
            except redis.RedisError:
                #lock i tak wygasnie po TTL
                logger.warning(f"Nie zwolniono locka checkoutu kupujacego {buyer_id}")

    def checkout(self, buyer_id: int, payload: CheckoutIn, idempotency_key: str | None = None) -> CheckoutOut:
        row = None
        if idempotency_key:
            request_hash = sha256_json({"buyer_id": buyer_id, **payload.model_dump()})
            existing = self.idempotency.get(buyer_id, CHECKOUT_SCOPE, idempotency_key)
            if existing:
                if existing.request_hash != request_hash:
                    raise IdempotencyMismatch("Idempotency-Key uzyty z innym zadaniem")
                if existing.status_code is None:
                    raise CheckoutInProgress("Checkout z tym kluczem jest w toku")
                logger.info(f"Checkout kupujacego {buyer_id}: powtorka klucza {idempotency_key}")
                return CheckoutOut.model_validate_json(existing.response_json)
            try:
                row = self.idempotency.reserve(buyer_id, CHECKOUT_SCOPE, idempotency_key, request_hash)
            except IntegrityError:
                self.db.rollback()
                raise CheckoutInProgress("Checkout z tym kluczem jest w toku")

        try:
            with self._buyer_lock(buyer_id):
                result = self._checkout(buyer_id, payload)
        except Exception:
            if row is not None:
                self._release_key(row.id)
            raise

        if row is not None:
            self.idempotency.save_response(row.id, 201, result.model_dump(mode="json"))
        return result

    def _release_key(self, row_id: int) -> None:
        try:
            self.idempotency.release(row_id)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Nie zwolniono klucza idempotencji {row_id}")

    def _checkout(self, buyer_id: int, payload: CheckoutIn) -> CheckoutOut:
        validation = self.validator.validate(buyer_id)
        if not validation.valid:
            raise CartValidationFailed(validation.errors, validation.warnings)

        method = payload.payment_method
        try:
            conversion = self._convert(buyer_id, validation, payload)
        except TransactionConflict as e:
            raise StockConflict("Produkty zostaly wlasnie wykupione, zwaliduj koszyk ponownie") from e

        session = self._initiate(buyer_id, conversion, method)

        if method == "cash":
            self.notifications.cash_order_created(self.orders.get_orders(conversion.order_ids))
        else:
            self._clear_cart(buyer_id, validation)

        return CheckoutOut(
            order_ids=conversion.order_ids,
            total=conversion.total,
            payment=session,
            warnings=validation.warnings,
        )

    @transaction_retry()
    def _convert(self, buyer_id: int, validation: CartValidation, payload: CheckoutIn) -> ConversionResult:
        return self.converter.convert(
            buyer_id,
            validation,
            payload.delivery_address,
            payload.notes,
            payload.payment_method,
            #gotowka nie ma kroku bramki, koszyk czyscimy w tej samej transakcji
            clear_cart=payload.payment_method == "cash",
        )

    def _initiate(self, buyer_id: int, conversion: ConversionResult, method: str) -> PaymentSession:
        try:
            return self.initiator.initiate(
                conversion.order_ids, conversion.payment_ids, conversion.total, method, buyer_id
            )
        except Exception:
            logger.warning(f"Brak sesji platnosci dla zamowien {conversion.order_ids}, wycofuje checkout")
            try:
                self.converter.revert(conversion.order_ids)
            except Exception:
                logger.exception(f"Kompensacja zamowien {conversion.order_ids} nie powiodla sie")
            raise

    def _clear_cart(self, buyer_id: int, validation: CartValidation) -> None:
        #zamowienia i platnosc juz istnieja, blad czyszczenia koszyka nie cofa checkoutu
        try:
            self.converter.clear_converted_items(buyer_id, validation)
        except SQLAlchemyError:
            logger.exception(f"Nie wyczyszczono koszyka kupujacego {buyer_id} po checkout")

    def retry_payment(self, buyer_id: int, gateway_reference: str) -> PaymentSession:
        with self._buyer_lock(buyer_id):
            try:
                return self.initiator.retry(gateway_reference, buyer_id)
            except PaymentAlreadySucceeded:
                #bramka juz pobrala pieniadze - domykamy zamowienia zamiast otwierac nowa sesje
                self.reconciler.settle_succeeded_intent(gateway_reference)
                raise
