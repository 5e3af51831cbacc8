# agromarket/services/payment_initiator.py
from decimal import Decimal
from typing import List

from sqlalchemy.orm import Session

from agromarket.data.models.payment import PaymentModel
from agromarket.domain.errors import GatewayError, InvalidPaymentState, PaymentAlreadySucceeded, PaymentNotFound
from agromarket.domain.schemas import PaymentSession
from agromarket.repos.order_repo import OrderRepo
from agromarket.repos.payment_repo import PaymentRepo
from agromarket.services.payment_gateway import StripeGateway, GATEWAY_NAME
from agromarket.utils.settings import PAYMENT_CURRENCY
from agromarket.utils.logging import get_logger

logger = get_logger(__name__)


class PaymentInitiator:
    """
    Otwiera sesje platnosci dla zamowien z checkoutu.

    - cash: bez wywolania bramki, platnosc zostaje pending do potwierdzenia przez sprzedawce
    - card/transfer: jeden PaymentIntent na caly checkout, jego id trafia jako
      gateway_reference do kazdej platnosci checkoutu
    Nie zmienia order_status - to robi dopiero rekoncyliacja.
    """

    def __init__(self, db: Session, gateway: StripeGateway, currency: str = PAYMENT_CURRENCY):
        self.db = db
        self.gateway = gateway
        self.currency = currency
        self.payments = PaymentRepo(db)
        self.orders = OrderRepo(db)

    def initiate(
        self,
        order_ids: List[int],
        payment_ids: List[int],
        amount: Decimal,
        method: str,
        buyer_id: int,
    ) -> PaymentSession:
        if method == "cash":
            logger.info(f"Zamowienia {order_ids}: platnosc gotowka, oczekuje na potwierdzenie sprzedawcy")
            return PaymentSession(status="pending", method=method, amount=amount, currency=self.currency)

        metadata = {
            "order_id": str(order_ids[0]),
            "order_ids": ",".join(str(i) for i in order_ids),
            "buyer_id": str(buyer_id),
        }
        #ten sam klucz przy ponowieniu -> stripe zwraca ten sam intent, nie ma podwojnego obciazenia
        idempotency_key = "checkout-" + "-".join(str(i) for i in payment_ids)
        intent = self.gateway.create_payment_intent(amount, self.currency, metadata, idempotency_key)

        self._store_reference(payment_ids, intent.id)
        logger.info(f"Zamowienia {order_ids}: utworzono PaymentIntent {intent.id}")

        return PaymentSession(
            status="pending",
            method=method,
            amount=amount,
            currency=self.currency,
            client_secret=intent.client_secret,
            gateway_reference=intent.id,
        )

    def _store_reference(self, payment_ids: List[int], gateway_reference: str) -> None:
        try:
            self.payments.set_reference(payment_ids, GATEWAY_NAME, gateway_reference)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception(f"Nie zapisano referencji {gateway_reference}, anuluje intent")
            self._cancel_quietly(gateway_reference)
            raise

    def _cancel_quietly(self, gateway_reference: str) -> None:
        try:
            self.gateway.cancel_payment_intent(gateway_reference)
        except GatewayError:
            logger.exception(f"Nie udalo sie anulowac PaymentIntent {gateway_reference}")

    def retry(self, gateway_reference: str, buyer_id: int) -> PaymentSession:
        """
        Ponowienie platnosci dla checkoutu, ktorego platnosci sa failed/canceled.
        Tworzy nowe rewizje Payment (supersedes = stara referencja).
        Idempotentne: istniejaca rewizja pending jest zwracana zamiast tworzenia nowej.
        """
        existing = self.payments.pending_superseding(gateway_reference)
        if existing:
            if existing[0].buyer_id != buyer_id:
                raise PermissionError("Brak dostępu do płatności")
            if existing[0].gateway_reference is None:
                raise InvalidPaymentState("Ponowienie platnosci jest w toku")
            intent = self.gateway.get_payment_intent(existing[0].gateway_reference)
            logger.info(f"Ponowienie {gateway_reference} juz istnieje: {intent.id}")
            return PaymentSession(
                status="pending",
                method=existing[0].method,
                amount=sum((p.amount for p in existing), Decimal("0.00")),
                currency=existing[0].currency,
                client_secret=intent.client_secret,
                gateway_reference=intent.id,
            )

        previous = self.payments.get_by_reference(gateway_reference)
        if not previous:
            raise PaymentNotFound("Platnosc nie istnieje")
        if previous[0].buyer_id != buyer_id:
            raise PermissionError("Brak dostępu do płatności")

        retryable = []
        for p in previous:
            latest = self.payments.latest_for_order(p.order_id)
            if p.status in ("failed", "canceled") and latest is not None and latest.id == p.id:
                retryable.append(p)

        orders = [o for o in self.orders.get_orders(p.order_id for p in retryable) if o.order_status == "pending"]
        if not orders:
            raise InvalidPaymentState("Brak zamowien oczekujacych na ponowienie platnosci")

        #stary intent musi byc martwy zanim powstanie nowy - inaczej mozliwe podwojne obciazenie
        #GatewayError leci dalej (502), w bazie nic sie nie zmienia
        old_intent = self.gateway.get_payment_intent(gateway_reference)
        if old_intent.status == "succeeded":
            raise PaymentAlreadySucceeded(
                "Platnosc zostala juz zrealizowana w bramce",
                {"gateway_reference": gateway_reference},
            )
        if old_intent.status != "canceled":
            self.gateway.cancel_payment_intent(gateway_reference)
            logger.info(f"Anulowano zastepowany PaymentIntent {gateway_reference}")

        method = previous[0].method
        try:
            revisions = [
                self.payments.add_payment(
                    PaymentModel(
                        order_id=o.id,
                        buyer_id=buyer_id,
                        amount=o.total,
                        currency=self.currency,
                        method=method,
                        gateway=GATEWAY_NAME,
                        supersedes=gateway_reference,
                        status="pending",
                    )
                )
                for o in orders
            ]
            self.orders.update_statuses([o.id for o in orders], payment_status="pending")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        amount = sum((o.total for o in orders), Decimal("0.00"))
        metadata = {
            "order_id": str(orders[0].id),
            "order_ids": ",".join(str(o.id) for o in orders),
            "buyer_id": str(buyer_id),
        }
        try:
            intent = self.gateway.create_payment_intent(
                amount, self.currency, metadata, "retry-" + "-".join(str(r.id) for r in revisions)
            )
        except GatewayError:
            self._drop_revisions(revisions, previous)
            raise

        self._store_reference([r.id for r in revisions], intent.id)
        logger.info(f"Ponowienie platnosci {gateway_reference} -> {intent.id} dla zamowien {[o.id for o in orders]}")

        return PaymentSession(
            status="pending",
            method=method,
            amount=amount,
            currency=self.currency,
            client_secret=intent.client_secret,
            gateway_reference=intent.id,
        )

    def _drop_revisions(self, revisions: List[PaymentModel], previous: List[PaymentModel]) -> None:
        #bramka nie dala sesji - przywracamy stan sprzed ponowienia
        try:
            for r in revisions:
                self.db.delete(r)
            by_order = {p.order_id: p.status for p in previous}
            for r in revisions:
                self.orders.update_statuses([r.order_id], payment_status=by_order.get(r.order_id, "failed"))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
