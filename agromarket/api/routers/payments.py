# agromarket/api/routers/payments.py
import json

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from agromarket.api.deps import get_gateway, get_lock_service, get_notifier
from agromarket.api.errors import http_error
from agromarket.data.database import get_db
from agromarket.domain.errors import CheckoutError, MalformedEvent
from agromarket.domain.events import decode_event
from agromarket.domain.schemas import PaymentConfirmIn, PaymentRetryIn, PaymentSession, ReconcileOut
from agromarket.services.checkout_service import CheckoutService
from agromarket.services.payment_reconciler import PaymentReconciler
from agromarket.utils.settings import STRIPE_WEBHOOK_SECRET
from agromarket.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def get_service(db: Session, gateway, notifier):
    return PaymentReconciler(db, gateway, notifier)


@router.post("/confirm", response_model=ReconcileOut)
def confirm_payment(
    payload: PaymentConfirmIn,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    gateway=Depends(get_gateway),
    notifier=Depends(get_notifier),
):
    """
    Synchroniczne potwierdzenie od klienta po zakonczeniu platnosci.
    """
    svc = get_service(db, gateway, notifier)
    try:
        return svc.confirm(payload.gateway_reference, payload.outcome, buyer_id=user_id)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except CheckoutError as e:
        raise http_error(e)


@router.post("/webhook", response_model=ReconcileOut)
async def payment_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
    gateway=Depends(get_gateway),
    notifier=Depends(get_notifier),
):
    """
    Webhook Stripe. 200 dla kazdego poprawnie zdekodowanego zdarzenia (takze duplikatow),
    400 dla niepoprawnego payloadu albo podpisu.
    """
    payload = await request.body()

    if STRIPE_WEBHOOK_SECRET:
        try:
            gateway.verify_signature(payload, stripe_signature, STRIPE_WEBHOOK_SECRET)
        except stripe.SignatureVerificationError:
            logger.warning("Webhook z niepoprawnym podpisem")
            raise HTTPException(status_code=400, detail="Niepoprawny podpis")
    else:
        logger.warning("STRIPE_WEBHOOK_SECRET nie ustawiony - podpis webhooka nie jest weryfikowany")

    try:
        event = decode_event(json.loads(payload or b"null"))
    except (ValueError, MalformedEvent) as e:
        logger.warning(f"Niepoprawny webhook: {e}")
        raise HTTPException(status_code=400, detail="Niepoprawny payload webhooka")

    svc = get_service(db, gateway, notifier)
    try:
        return await run_in_threadpool(svc.handle_event, event)
    except CheckoutError as e:
        #zdarzenie nieprzetworzone - stripe ponowi dostarczenie
        logger.error(f"Webhook {event.event_type} {event.intent_id}: {e}")
        raise HTTPException(status_code=500, detail="Nie udalo sie przetworzyc zdarzenia")
    except SQLAlchemyError:
        logger.exception(f"Webhook {event.event_type} {event.intent_id}: blad bazy")
        raise HTTPException(status_code=500, detail="Nie udalo sie przetworzyc zdarzenia")


@router.post("/retry", response_model=PaymentSession, status_code=201)
def retry_payment(
    payload: PaymentRetryIn,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    gateway=Depends(get_gateway),
    lock_service=Depends(get_lock_service),
    notifier=Depends(get_notifier),
):
    svc = CheckoutService(db, gateway, lock_service, notifier)
    try:
        return svc.retry_payment(user_id, payload.gateway_reference)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except CheckoutError as e:
        raise http_error(e)


@router.post("/cash/{order_id}/confirm", response_model=ReconcileOut)
def confirm_cash_payment(
    order_id: int,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    gateway=Depends(get_gateway),
    notifier=Depends(get_notifier),
):
    """
    Sprzedawca potwierdza odbior gotowki.
    """
    svc = get_service(db, gateway, notifier)
    try:
        return svc.confirm_cash(order_id, seller_id=user_id)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except CheckoutError as e:
        raise http_error(e)
