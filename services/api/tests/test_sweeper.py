from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from services.api.app.services.domain import LineItem, Order, OrderStatus
from services.api.app.services.persistence_memory import InMemoryOrderPersistence
from services.api.app.services.sweeper import StaleOrderSweeper
from services.api.tests.helpers import MONDAY, NEXT_PICKUP, PICKUP

AFTER_PICKUP = PICKUP + timedelta(hours=6)


def _store(
    persistence: InMemoryOrderPersistence,
    owner_id: str,
    pickup_at: datetime,
    quantity: str = "0",
    status: OrderStatus = OrderStatus.PLACED,
) -> str:
    items = ()
    if quantity != "0":
        items = (LineItem("apple", "each", Decimal(quantity), Decimal("0.50")),)
    return persistence.create_order(
        Order(
            id="",
            owner_id=owner_id,
            created_at=MONDAY,
            pickup_at=pickup_at,
            items=items,
            status=status,
        )
    )


def _status(persistence: InMemoryOrderPersistence, order_id: str) -> OrderStatus:
    order = persistence.load_order(order_id)
    assert order is not None
    return order.status


def test_empty_orders_past_pickup_are_completed(persistence: InMemoryOrderPersistence) -> None:
    placed = _store(persistence, "u-1", PICKUP)
    locked = _store(persistence, "u-2", PICKUP, status=OrderStatus.LOCKED)

    completed = StaleOrderSweeper(persistence).sweep_stale_completions(AFTER_PICKUP)

    assert {o.id for o in completed} == {placed, locked}
    assert _status(persistence, placed) is OrderStatus.COMPLETED
    assert _status(persistence, locked) is OrderStatus.COMPLETED


def test_orders_with_value_or_future_pickup_are_left_alone(
    persistence: InMemoryOrderPersistence,
) -> None:
    with_items = _store(persistence, "u-1", PICKUP, quantity="2", status=OrderStatus.LOCKED)
    upcoming = _store(persistence, "u-1", NEXT_PICKUP)
    cancelled = _store(persistence, "u-1", PICKUP, status=OrderStatus.CANCELLED)

    assert StaleOrderSweeper(persistence).sweep_stale_completions(AFTER_PICKUP) == []

    assert _status(persistence, with_items) is OrderStatus.LOCKED
    assert _status(persistence, upcoming) is OrderStatus.PLACED
    assert _status(persistence, cancelled) is OrderStatus.CANCELLED


def test_pickup_instant_itself_is_not_stale(persistence: InMemoryOrderPersistence) -> None:
    _store(persistence, "u-1", PICKUP)
    assert StaleOrderSweeper(persistence).sweep_stale_completions(PICKUP) == []


def test_sweep_is_idempotent(persistence: InMemoryOrderPersistence) -> None:
    _store(persistence, "u-1", PICKUP)
    sweeper = StaleOrderSweeper(persistence)

    assert len(sweeper.sweep_stale_completions(AFTER_PICKUP)) == 1
    assert sweeper.sweep_stale_completions(AFTER_PICKUP) == []


def test_sweep_scoped_to_owner(persistence: InMemoryOrderPersistence) -> None:
    mine = _store(persistence, "u-1", PICKUP)
    theirs = _store(persistence, "u-2", PICKUP)

    completed = StaleOrderSweeper(persistence).sweep_stale_completions(AFTER_PICKUP, "u-1")

    assert [o.id for o in completed] == [mine]
    assert _status(persistence, theirs) is OrderStatus.PLACED


class _LosingWrites(InMemoryOrderPersistence):
    def update_order(self, order: Order, expected_version: int) -> bool:
        return False


def test_lost_version_race_is_skipped() -> None:
    persistence = _LosingWrites()
    order_id = _store(persistence, "u-1", PICKUP)

    assert StaleOrderSweeper(persistence).sweep_stale_completions(AFTER_PICKUP) == []
    assert _status(persistence, order_id) is OrderStatus.PLACED
