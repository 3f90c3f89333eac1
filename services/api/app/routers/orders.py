from __future__ import annotations

from datetime import datetime
from typing import NoReturn

from fastapi import APIRouter, HTTPException, Query
from services.api.app.models.order import (
    LineItemOut,
    OrderCancelRequest,
    OrderOut,
    PickupSlotOut,
    SweepResponse,
)
from services.api.app.services.domain import LineItem, Order, OrderStatus
from services.api.app.services.engine_factory import OrderEngine, get_order_engine
from services.api.app.services.errors import EngineError, ErrorKind, PersistenceError
from services.api.app.services.schedule import PickupScheduleCalculator
from services.api.app.services.store import baskets

router = APIRouter()

_STATUS_BY_KIND = {
    ErrorKind.INVALID_QUANTITY: 422,
    ErrorKind.NO_PICKUP_SELECTED: 400,
    ErrorKind.EMPTY_BASKET: 400,
    ErrorKind.PICKUP_WINDOW_EXPIRED: 410,
    ErrorKind.EDIT_WINDOW_CLOSED: 423,
    ErrorKind.ALREADY_TERMINAL: 409,
    ErrorKind.CONFLICT: 412,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.SIGN_IN_REQUIRED: 401,
}


def raise_engine_error(error: EngineError) -> NoReturn:
    raise HTTPException(
        status_code=_STATUS_BY_KIND[error.kind],
        detail={"kind": error.kind.value, "message": error.message},
    )


def raise_infrastructure_error(e: Exception) -> NoReturn:
    if isinstance(e, PersistenceError):
        raise HTTPException(status_code=503, detail=str(e)) from e

    raise HTTPException(status_code=500, detail="Internal Server Error") from e


def load_engine() -> OrderEngine:
    try:
        return get_order_engine()
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e


def line_items_out(items: list[LineItem]) -> list[LineItemOut]:
    return [
        LineItemOut(
            product_id=item.product_id,
            unit_label=item.unit_label,
            quantity=item.quantity,
            unit_price=item.unit_price,
            line_total=item.line_total,
        )
        for item in items
    ]


def order_to_out(order: Order, schedule: PickupScheduleCalculator, now: datetime) -> OrderOut:
    scheduled = order.scheduled_pickup_at
    return OrderOut(
        order_id=order.id,
        owner_id=order.owner_id,
        status=order.status.value,
        version=order.version,
        created_at=order.created_at.isoformat(),
        updated_at=order.updated_at.isoformat() if order.updated_at else None,
        pickup_at=order.pickup_at.isoformat(),
        date_key=schedule.date_key(order.pickup_at),
        edit_deadline=schedule.edit_deadline(scheduled).isoformat(),
        window_status=schedule.window_status(scheduled, now).value,
        deadline_warning=schedule.deadline_warning_level(scheduled, now).value,
        items=line_items_out(list(order.items)),
        total=order.total,
    )


@router.get("/v1/pickups", response_model=list[PickupSlotOut])
def list_pickups(count: int = Query(5, ge=1, le=26)) -> list[PickupSlotOut]:
    engine = load_engine()
    schedule = engine.schedule
    return [
        PickupSlotOut(
            pickup_at=p.isoformat(),
            edit_deadline=schedule.edit_deadline(p).isoformat(),
            date_key=schedule.date_key(p),
        )
        for p in schedule.next_pickup_instants(engine.clock.now(), count)
    ]


@router.get("/v1/orders", response_model=list[OrderOut])
def list_orders(owner_id: str, status: list[OrderStatus] | None = Query(None)) -> list[OrderOut]:
    engine = load_engine()
    now = engine.clock.now()
    try:
        orders = engine.persistence.list_orders_for_owner(owner_id, status)
    except Exception as e:
        raise_infrastructure_error(e)

    orders.sort(key=lambda o: o.pickup_at, reverse=True)
    return [order_to_out(o, engine.schedule, now) for o in orders]


@router.get("/v1/orders/{order_id}", response_model=OrderOut)
def get_order(order_id: str, owner_id: str) -> OrderOut:
    engine = load_engine()
    try:
        order = engine.persistence.load_order(order_id)
    except Exception as e:
        raise_infrastructure_error(e)

    if order is None or order.owner_id != owner_id:
        raise_engine_error(EngineError(ErrorKind.NOT_FOUND, f"Order {order_id} not found."))
    return order_to_out(order, engine.schedule, engine.clock.now())


@router.post("/v1/orders/{order_id}/cancel", response_model=OrderOut)
def cancel_order(order_id: str, payload: OrderCancelRequest) -> OrderOut:
    engine = load_engine()
    now = engine.clock.now()
    try:
        error = engine.lifecycle.cancel(order_id, now, owner_id=payload.owner_id)
        if error is not None:
            raise_engine_error(error)
        order = engine.persistence.load_order(order_id)
    except HTTPException:
        raise
    except Exception as e:
        raise_infrastructure_error(e)

    basket = baskets.get(payload.owner_id)
    if basket is not None and basket.snapshot().bound_order_id == order_id:
        basket.clear()

    assert order is not None
    return order_to_out(order, engine.schedule, now)


@router.post("/v1/maintenance/sweep", response_model=SweepResponse)
def run_sweeps() -> SweepResponse:
    engine = load_engine()
    now = engine.clock.now()
    try:
        locked = engine.lifecycle.sweep_deadlines(now)
        completed = engine.lifecycle.sweep_stale_completions(now)
    except Exception as e:
        raise_infrastructure_error(e)

    return SweepResponse(
        locked_order_ids=[o.id for o in locked],
        completed_order_ids=[o.id for o in completed],
    )
