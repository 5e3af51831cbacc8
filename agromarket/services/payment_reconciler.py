# agromarket/services/payment_reconciler.py
from typing import List

from sqlalchemy.orm import Session

from agromarket.data.models.payment import PaymentModel
from agromarket.domain.errors import (
    DuplicateEvent,
    InvalidPaymentState,
    OrderNotFound,
    PaymentNotFound,
)
from agromarket.domain.events import GatewayEvent, PAYMENT_STATUS_FOR_KIND, kind_from_intent_status
from agromarket.domain.schemas import ReconcileOut
from agromarket.repos.order_repo import OrderRepo
from agromarket.repos.payment_repo import PaymentRepo
from agromarket.services.notification_service import NotificationService
from agromarket.services.order_notifications import OrderNotifications
from agromarket.services.payment_gateway import StripeGateway
from agromarket.utils.settings import CONFIRM_VERIFY_WITH_GATEWAY
from agromarket.utils.logging import get_logger

logger = get_logger(__name__)


class PaymentReconciler:
    """
    Maszyna stanow platnosci: pending -> paid | failed | canceled.

    Dwa kanaly (potwierdzenie klienta i webhook) koncza w tym samym
    warunkowym update ... where status = 'pending'. Pierwszy wygrywa,
    kazdy nastepny to DuplicateEvent - no-op bez powiadomien.
    """

    def __init__(
        self,
        db: Session,
        gateway: StripeGateway,
        notifier: NotificationService,
        verify_with_gateway: bool = CONFIRM_VERIFY_WITH_GATEWAY,
    ):
        self.db = db
        self.gateway = gateway
        self.payments = PaymentRepo(db)
        self.orders = OrderRepo(db)
        self.notifications = OrderNotifications(db, notifier)
        self.verify_with_gateway = verify_with_gateway

    # webhook
    def handle_event(self, event: GatewayEvent) -> ReconcileOut:
        if event.kind == "unknown":
            logger.info(f"Webhook {event.event_type} ({event.event_id}) zignorowany")
            return ReconcileOut(status="ignored", applied=False)

        if not self.payments.get_by_reference(event.intent_id) and not self._adopt(event):
            logger.warning(
                f"Webhook {event.event_type}: brak platnosci dla intentu {event.intent_id} "
                f"(order_id={event.order_id}), ignoruje"
            )
            return ReconcileOut(status="ignored", applied=False)

        return self._apply_once(event.intent_id, event.kind, f"webhook {event.event_type}")

    def _adopt(self, event: GatewayEvent) -> bool:
        #zapis referencji po utworzeniu intentu sie nie udal - szukamy po metadata.order_ids
        order_ids = event.order_ids or ([event.order_id] if event.order_id is not None else [])
        adopted: List[int] = []
        try:
            for order_id in order_ids:
                payment = self.payments.latest_for_order(order_id)
                if payment is None or payment.method == "cash":
                    continue
                if self.payments.adopt_reference(payment.id, event.intent_id):
                    adopted.append(payment.id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        if adopted:
            logger.warning(f"Platnosci {adopted} przejely referencje {event.intent_id} z metadata")
        return bool(adopted)

    # potwierdzenie klienta
    def confirm(self, gateway_reference: str, outcome: str, buyer_id: int | None = None) -> ReconcileOut:
        payments = self.payments.get_by_reference(gateway_reference)
        if not payments:
            raise PaymentNotFound("Platnosc nie istnieje")
        if buyer_id is not None and payments[0].buyer_id != buyer_id:
            raise PermissionError("Brak dostępu do płatności")

        kind = outcome
        if self.verify_with_gateway:
            intent = self.gateway.get_payment_intent(gateway_reference)
            reported = kind_from_intent_status(intent.status)
            if reported == "succeeded" or reported == "canceled":
                #bramka jest zrodlem prawdy
                kind = reported
            elif outcome == "succeeded":
                logger.info(
                    f"Klient zglosil sukces {gateway_reference}, bramka: {intent.status} - czekam na webhook"
                )
                return ReconcileOut(
                    applied=False,
                    payment_status=payments[0].status,
                    order_ids=[p.order_id for p in payments],
                )

        return self._apply_once(gateway_reference, kind, "confirm")

    # gotowka
    def confirm_cash(self, order_id: int, seller_id: int) -> ReconcileOut:
        order = self.orders.get_order(order_id)
        if not order:
            raise OrderNotFound("Zamówienie nie istnieje")
        if order.seller_id != seller_id:
            raise PermissionError("Tylko sprzedawca moze potwierdzic platnosc gotowka")

        payment = self.payments.latest_for_order(order_id)
        if payment is None or payment.method != "cash":
            raise InvalidPaymentState("Zamowienie nie jest platne gotowka")
        if order.order_status == "canceled":
            raise InvalidPaymentState("Zamowienie zostalo anulowane")

        try:
            #lock zamowienia przed platnoscia, jak przy anulowaniu
            locked = self.orders.lock_orders([order_id]).get(order_id)
            if locked is None or locked.order_status == "canceled":
                raise InvalidPaymentState("Zamowienie zostalo anulowane")
            if not self.payments.transition_by_id(payment.id, "paid"):
                self.db.rollback()
                logger.info(f"Platnosc gotowka {payment.id} juz w stanie {payment.status}, no-op")
                return ReconcileOut(
                    applied=False, duplicate=True, payment_status=payment.status, order_ids=[order_id]
                )
            self.orders.update_statuses([order_id], payment_status="paid", order_status="confirmed")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Sprzedawca {seller_id} potwierdzil gotowke za zamowienie {order_id}")
        self.notifications.payment_completed(self.orders.get_orders([order_id]))
        return ReconcileOut(applied=True, payment_status="paid", order_ids=[order_id])

    # ponowienie platnosci
    def settle_succeeded_intent(self, gateway_reference: str) -> ReconcileOut:
        """
        Bramka raportuje sukces intentu, ktorego platnosci sa juz failed/canceled
        (kolejna proba karty udala sie po payment_failed). Wolane tylko z ponowienia,
        po sprawdzeniu statusu w bramce - zdarzenia z webhooka nadal sa duplikatami.
        """
        return self._apply_once(gateway_reference, "succeeded", "retry", record_late_success=True)

    def _apply_once(
        self, gateway_reference: str, kind: str, source: str, record_late_success: bool = False
    ) -> ReconcileOut:
        try:
            return self._apply(gateway_reference, kind, source, record_late_success)
        except DuplicateEvent as e:
            logger.info(f"{source}: {e.message}")
            return ReconcileOut(
                applied=False,
                duplicate=True,
                payment_status=e.details.get("payment_status"),
                order_ids=e.details.get("order_ids", []),
            )

    def _apply(
        self, gateway_reference: str, kind: str, source: str, record_late_success: bool = False
    ) -> ReconcileOut:
        new_status = PAYMENT_STATUS_FOR_KIND[kind]

        try:
            #najpierw zamowienia, potem platnosci - ta sama kolejnosc co anulowanie
            self.orders.lock_orders(p.order_id for p in self.payments.get_by_reference(gateway_reference))

            if self.payments.transition_by_reference(gateway_reference, new_status) == 0:
                current = self.payments.get_by_reference(gateway_reference)
                if not current:
                    self.db.rollback()
                    raise PaymentNotFound("Platnosc nie istnieje")
                order_ids = []
                if record_late_success and new_status == "paid":
                    order_ids = self._record_late_success(gateway_reference, current)
                if not order_ids:
                    self.db.rollback()
                    latest = max(current, key=lambda p: p.id)
                    raise DuplicateEvent(
                        f"Platnosc {gateway_reference} juz w stanie {latest.status}, pomijam {new_status}",
                        {"payment_status": latest.status, "order_ids": sorted({p.order_id for p in current})},
                    )
            else:
                order_ids = [
                    p.order_id for p in self.payments.get_by_reference(gateway_reference) if p.status == new_status
                ]

            if new_status == "paid":
                self.orders.update_statuses(order_ids, payment_status="paid", order_status="confirmed")
            else:
                #zamowienie zostaje pending, stock nie wraca
                self.orders.update_statuses(order_ids, payment_status=new_status)
            self.db.commit()
        except (DuplicateEvent, PaymentNotFound):
            raise
        except Exception:
            self.db.rollback()
            logger.exception(f"{source}: nie udalo sie zapisac przejscia {gateway_reference} -> {new_status}")
            raise

        logger.info(f"{source}: platnosc {gateway_reference} -> {new_status}, zamowienia {order_ids}")

        if new_status == "paid":
            self.notifications.payment_completed(self.orders.get_orders(order_ids))

        return ReconcileOut(applied=True, payment_status=new_status, order_ids=order_ids)

    def _record_late_success(self, gateway_reference: str, current: List[PaymentModel]) -> List[int]:
        #stara rewizja zostaje failed/canceled, oplacenie to nowa rewizja paid z ta sama referencja
        orders = {o.id: o for o in self.orders.get_orders(p.order_id for p in current)}
        paid: List[int] = []

        for p in current:
            order = orders.get(p.order_id)
            if p.status not in ("failed", "canceled") or order is None or order.order_status != "pending":
                continue
            latest = self.payments.latest_for_order(p.order_id)
            if latest is None or latest.id != p.id:
                continue
            self.payments.add_payment(
                PaymentModel(
                    order_id=p.order_id,
                    buyer_id=p.buyer_id,
                    amount=p.amount,
                    currency=p.currency,
                    method=p.method,
                    gateway=p.gateway,
                    gateway_reference=gateway_reference,
                    supersedes=gateway_reference,
                    status="paid",
                )
            )
            paid.append(p.order_id)

        if paid:
            logger.warning(f"Spozniony sukces {gateway_reference}: rewizje paid dla zamowien {paid}")
        return paid
