# agromarket/api/routers/orders.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from agromarket.api.deps import get_gateway
from agromarket.api.errors import http_error
from agromarket.data.database import get_db
from agromarket.domain.errors import CheckoutError
from agromarket.domain.schemas import OrderOut
from agromarket.services.order_service import OrderService

router = APIRouter(prefix="/orders", tags=["orders"])


def get_service(db: Session, gateway=None):
    return OrderService(db, gateway=gateway)


@router.get("", response_model=List[OrderOut])
def list_purchases(
    user_id: int = Query(...),
    db: Session = Depends(get_db),
):
    """
    Zamowienia zlozone przez kupujacego.
    """
    svc = get_service(db)
    return svc.list_orders(user_id, role="purchases")


@router.get("/received", response_model=List[OrderOut])
def list_received(
    user_id: int = Query(...),
    db: Session = Depends(get_db),
):
    """
    Zamowienia otrzymane przez sprzedawce.
    """
    svc = get_service(db)
    return svc.list_orders(user_id, role="received")


@router.get("/{order_id}", response_model=OrderOut)
def get_order(
    order_id: int,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
):
    """
    Pobiera szczegóły zamówienia.
    """
    svc = get_service(db)
    try:
        return svc.get_order(order_id, user_id)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except CheckoutError as e:
        raise http_error(e)


@router.post("/{order_id}/cancel", response_model=OrderOut)
def cancel_order(
    order_id: int,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    gateway=Depends(get_gateway),
):
    svc = get_service(db, gateway)
    try:
        return svc.cancel_order(order_id, user_id)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except CheckoutError as e:
        raise http_error(e)
