"""Pickup order service entrypoint."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from services.api.app.config import load_config
from services.api.app.db.init_db import init_db
from services.api.app.logging_config import configure_logging
from services.api.app.routers.basket import router as basket_router
from services.api.app.routers.orders import router as orders_router


@asynccontextmanager
async def _lifespan(_: FastAPI) -> AsyncIterator[None]:
    configure_logging()
    if load_config().persistence == "sql":
        init_db()
    yield


app = FastAPI(title="Pickup Orders API", lifespan=_lifespan)

app.include_router(basket_router)
app.include_router(orders_router)


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
