# agromarket/main.py
from fastapi import FastAPI
import uvicorn

from agromarket.data.database import Base, engine
from agromarket.api.routers import carts, health, orders, payments
from agromarket.utils.logging import get_logger

# import wszystkich modeli przed create_all
import agromarket.data.models  # noqa: F401

logger = get_logger(__name__)


def init_db() -> None:
    logger.info(f"Inicjalizacja bazy, tabele: {list(Base.metadata.tables.keys())}")
    try:
        Base.metadata.create_all(bind=engine)
    except Exception:
        logger.exception("Nie udalo sie utworzyc tabel")
        raise
    logger.info("Tabele bazy utworzone")


def create_app() -> FastAPI:
    app = FastAPI(
        title="AgroMarket Checkout",
        version="1.0.0",
    )

    app.include_router(health.router)
    app.include_router(carts.router)
    app.include_router(payments.router)
    app.include_router(orders.router)

    return app


init_db()
app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
