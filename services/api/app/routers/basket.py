from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter
from services.api.app.models.basket import (
    BasketCommitRequest,
    BasketItemRequest,
    BasketOut,
    BasketOwnerRequest,
    BasketResolveRequest,
    ConflictOut,
    ItemChangeOut,
    MergeConflictOut,
    ReconciliationOut,
)
from services.api.app.models.order import OrderOut
from services.api.app.routers.orders import (
    line_items_out,
    load_engine,
    order_to_out,
    raise_engine_error,
    raise_infrastructure_error,
)
from services.api.app.services.domain import Basket
from services.api.app.services.engine_factory import OrderEngine
from services.api.app.services.errors import EngineError
from services.api.app.services.reconciliation import ReconciliationResult, merge_conflicts
from services.api.app.services.store import baskets

router = APIRouter()


def _basket_to_out(basket: Basket) -> BasketOut:
    return BasketOut(
        owner_id=basket.owner_id,
        items=line_items_out(list(basket.items.values())),
        total=basket.total,
        bound_order_id=basket.bound_order_id,
        bound_order_date_key=basket.bound_order_date_key,
        bound_order_version=basket.bound_order_version,
    )


def _reconciliation_to_out(
    result: ReconciliationResult, engine: OrderEngine, now: datetime
) -> ReconciliationOut:
    conflict_out = None
    if result.conflict is not None:
        conflict = result.conflict
        conflict_out = ConflictOut(
            reason=conflict.reason.value,
            local_basket=_basket_to_out(conflict.local_basket),
            remote_order=order_to_out(conflict.remote_order, engine.schedule, now),
            merge_conflicts=[
                MergeConflictOut(
                    product_id=c.product_id,
                    conflict_type=c.conflict_type.value,
                    existing_quantity=c.existing_quantity,
                    new_quantity=c.new_quantity,
                    resolution=c.resolution.value,
                )
                for c in merge_conflicts(
                    conflict.local_basket.items, conflict.remote_order.items
                )
            ],
        )

    return ReconciliationOut(
        basket=_basket_to_out(result.basket),
        order=order_to_out(result.order, engine.schedule, now) if result.order else None,
        items=[
            ItemChangeOut(
                product_id=item.product_id,
                current_quantity=item.current_quantity,
                committed_quantity=item.committed_quantity,
                has_changed=item.has_changed,
            )
            for item in result.items.values()
        ],
        is_divergent=result.is_divergent,
        is_editable=result.is_editable,
        loaded=result.loaded,
        released=result.released,
        conflict=conflict_out,
    )


@router.get("/v1/basket", response_model=BasketOut)
def get_basket(owner_id: str) -> BasketOut:
    engine = load_engine()
    return _basket_to_out(baskets.get_or_create(owner_id, engine.config).snapshot())


@router.post("/v1/basket/items", response_model=BasketOut)
def set_basket_item(payload: BasketItemRequest) -> BasketOut:
    engine = load_engine()
    store = baskets.get_or_create(payload.owner_id, engine.config)

    if payload.mode == "add":
        error = store.add_quantity(
            payload.product_id, payload.unit_label, payload.unit_price, payload.quantity
        )
    else:
        error = store.set_quantity(
            payload.product_id, payload.unit_label, payload.unit_price, payload.quantity
        )
    if error is not None:
        raise_engine_error(error)

    return _basket_to_out(store.snapshot())


@router.delete("/v1/basket", response_model=BasketOut)
def clear_basket(owner_id: str) -> BasketOut:
    engine = load_engine()
    store = baskets.get_or_create(owner_id, engine.config)
    store.clear()
    return _basket_to_out(store.snapshot())


@router.post("/v1/basket/reconcile", response_model=ReconciliationOut)
def reconcile_basket(payload: BasketOwnerRequest) -> ReconciliationOut:
    engine = load_engine()
    store = baskets.get_or_create(payload.owner_id, engine.config)
    now = engine.clock.now()

    try:
        # Session start: settle this owner's orders before looking for an editable one.
        engine.lifecycle.sweep_deadlines(now, owner_id=payload.owner_id)
        engine.lifecycle.sweep_stale_completions(now, owner_id=payload.owner_id)
        result = engine.reconciliation.reconcile(store, now)
    except Exception as e:
        raise_infrastructure_error(e)

    return _reconciliation_to_out(result, engine, now)


@router.post("/v1/basket/resolve", response_model=ReconciliationOut)
def resolve_basket(payload: BasketResolveRequest) -> ReconciliationOut:
    engine = load_engine()
    store = baskets.get_or_create(payload.owner_id, engine.config)
    now = engine.clock.now()

    try:
        result = engine.reconciliation.reconcile(store, now)
        if result.conflict is not None:
            result = engine.reconciliation.resolve(
                store, result.conflict, payload.strategy, payload.resolutions, now=now
            )
    except Exception as e:
        raise_infrastructure_error(e)

    return _reconciliation_to_out(result, engine, now)


@router.post("/v1/basket/commit", response_model=OrderOut)
def commit_basket(payload: BasketCommitRequest) -> OrderOut:
    engine = load_engine()
    store = baskets.get_or_create(payload.owner_id, engine.config)
    now = engine.clock.now()

    try:
        result = engine.lifecycle.commit_basket(store, payload.pickup_at, now)
    except Exception as e:
        raise_infrastructure_error(e)

    if isinstance(result, EngineError):
        raise_engine_error(result)
    return order_to_out(result, engine.schedule, now)

