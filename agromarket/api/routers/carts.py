# agromarket/api/routers/carts.py
from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agromarket.api.deps import get_gateway, get_lock_service, get_notifier
from agromarket.api.errors import http_error
from agromarket.data.database import get_db
from agromarket.domain.errors import CheckoutError
from agromarket.domain.schemas import (
    CartItemIn,
    CartItemUpdateIn,
    CartOut,
    CartStatsOut,
    CartValidation,
    CheckoutIn,
    CheckoutOut,
)
from agromarket.services.cart_service import CartService
from agromarket.services.cart_validator import CartValidator
from agromarket.services.checkout_service import CheckoutService
from agromarket.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/cart", tags=["cart"])


def get_service(db: Session):
    return CartService(db)


@router.get("", response_model=CartOut)
def get_cart(
    user_id: int = Query(...),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return svc.get_cart(user_id)


@router.get("/stats", response_model=CartStatsOut)
def get_stats(
    user_id: int = Query(...),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return svc.get_stats(user_id)


@router.post("/items", response_model=CartOut)
def add_item(
    payload: CartItemIn,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.add_product(user_id=user_id, product_id=payload.product_id, quantity=payload.quantity)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.put("/items/{product_id}", response_model=CartOut)
def update_item(
    product_id: int,
    payload: CartItemUpdateIn,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.update_quantity(user_id, product_id, payload.quantity)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.delete("/items/{product_id}", response_model=CartOut)
def remove_item(
    product_id: int,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.remove_product(user_id, product_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.delete("", response_model=CartOut)
def clear_cart(
    user_id: int = Query(...),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.clear_cart(user_id)
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/validate", response_model=CartValidation)
def validate_cart(
    user_id: int = Query(...),
    db: Session = Depends(get_db),
):
    """
    Sprawdza koszyk wzgledem aktualnego katalogu, niczego nie zmienia.
    """
    return CartValidator(db).validate(user_id)


@router.post("/checkout", response_model=CheckoutOut, status_code=201)
def checkout(
    payload: CheckoutIn,
    user_id: int = Query(...),
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
    db: Session = Depends(get_db),
    gateway=Depends(get_gateway),
    lock_service=Depends(get_lock_service),
    notifier=Depends(get_notifier),
):
    """
    Koszyk -> zamowienia (jedno na sprzedawce) -> sesja platnosci.
    """
    svc = CheckoutService(db, gateway, lock_service, notifier)
    try:
        return svc.checkout(user_id, payload, idempotency_key)
    except CheckoutError as e:
        raise http_error(e)
    except SQLAlchemyError:
        logger.exception(f"Checkout kupujacego {user_id} nie powiodl sie")
        raise HTTPException(status_code=500, detail="Blad serwera, sprobuj ponownie")
