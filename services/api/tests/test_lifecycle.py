from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from services.api.app.services.basket_store import BasketStore
from services.api.app.services.domain import Basket, LineItem, Order, OrderStatus
from services.api.app.services.errors import EngineError, ErrorKind
from services.api.app.services.lifecycle import OrderLifecycleMachine
from services.api.app.services.persistence_memory import InMemoryOrderPersistence
from services.api.app.services.schedule import PickupScheduleCalculator
from services.api.app.services.transitions import is_valid_transition, write_transition
from services.api.tests.helpers import DEADLINE, MONDAY, NEXT_PICKUP, PICKUP, WEDNESDAY, fill


def _placed(lifecycle: OrderLifecycleMachine, store: BasketStore) -> Order:
    order = lifecycle.commit_basket(store, PICKUP, MONDAY)
    assert isinstance(order, Order)
    return order


def test_commit_creates_placed_order(
    lifecycle: OrderLifecycleMachine, persistence: InMemoryOrderPersistence
) -> None:
    store = fill(BasketStore("u-1"), apple=2, pear=1)

    order = _placed(lifecycle, store)

    assert order.status is OrderStatus.PLACED
    assert order.version == 1
    assert order.pickup_at == PICKUP
    assert order.quantity_of("apple") == Decimal("2")
    assert order.total == Decimal("4.50")
    assert persistence.load_order(order.id) == order


def test_commit_basket_binds_store_to_new_order(lifecycle: OrderLifecycleMachine) -> None:
    store = fill(BasketStore("u-1"), apple=2)

    order = _placed(lifecycle, store)

    snapshot = store.snapshot()
    assert snapshot.bound_order_id == order.id
    assert snapshot.bound_order_date_key == "20251113"
    assert snapshot.bound_order_version == 1
    assert not store.is_modified()


@pytest.mark.parametrize("pickup_at", [None, PICKUP + timedelta(days=1)])
def test_commit_requires_an_offered_pickup(
    lifecycle: OrderLifecycleMachine, pickup_at: object
) -> None:
    result = lifecycle.commit_basket(fill(BasketStore("u-1"), apple=1), pickup_at, MONDAY)

    assert isinstance(result, EngineError)
    assert result.kind is ErrorKind.NO_PICKUP_SELECTED


def test_commit_after_deadline_is_expired(
    lifecycle: OrderLifecycleMachine, persistence: InMemoryOrderPersistence
) -> None:
    result = lifecycle.commit_basket(fill(BasketStore("u-1"), apple=1), PICKUP, WEDNESDAY)

    assert isinstance(result, EngineError)
    assert result.kind is ErrorKind.PICKUP_WINDOW_EXPIRED
    assert persistence.list_orders() == []


def test_commit_at_deadline_instant_succeeds(lifecycle: OrderLifecycleMachine) -> None:
    result = lifecycle.commit_basket(fill(BasketStore("u-1"), apple=1), PICKUP, DEADLINE)
    assert isinstance(result, Order)


def test_commit_empty_basket_is_rejected(lifecycle: OrderLifecycleMachine) -> None:
    result = lifecycle.commit(Basket("u-1"), PICKUP, MONDAY)

    assert isinstance(result, EngineError)
    assert result.kind is ErrorKind.EMPTY_BASKET


def test_commit_without_owner_requires_sign_in(lifecycle: OrderLifecycleMachine) -> None:
    basket = Basket(None, {"apple": LineItem("apple", "each", Decimal("1"), Decimal("1"))})

    result = lifecycle.commit(basket, PICKUP, MONDAY)

    assert isinstance(result, EngineError)
    assert result.kind is ErrorKind.SIGN_IN_REQUIRED


def test_second_new_order_for_same_pickup_conflicts(lifecycle: OrderLifecycleMachine) -> None:
    _placed(lifecycle, fill(BasketStore("u-1"), apple=1))

    result = lifecycle.commit_basket(fill(BasketStore("u-1"), pear=1), PICKUP, MONDAY)
    assert isinstance(result, EngineError)
    assert result.kind is ErrorKind.CONFLICT

    other_week = lifecycle.commit_basket(fill(BasketStore("u-1"), pear=1), NEXT_PICKUP, MONDAY)
    other_owner = lifecycle.commit_basket(fill(BasketStore("u-2"), pear=1), PICKUP, MONDAY)
    assert isinstance(other_week, Order)
    assert isinstance(other_owner, Order)


def test_commit_bound_basket_updates_order_in_place(lifecycle: OrderLifecycleMachine) -> None:
    store = fill(BasketStore("u-1"), apple=2, pear=1)
    order = _placed(lifecycle, store)

    fill(store, apple=5, pear=0)
    updated = lifecycle.commit_basket(store, None, MONDAY + timedelta(hours=1))

    assert isinstance(updated, Order)
    assert updated.id == order.id
    assert updated.version == 2
    assert updated.pickup_at == order.pickup_at
    assert updated.quantity_of("apple") == Decimal("5")
    assert updated.quantity_of("pear") == Decimal("0")
    assert store.snapshot().bound_order_version == 2


def test_emptying_a_bound_basket_keeps_order_with_zero_total(
    lifecycle: OrderLifecycleMachine,
) -> None:
    store = fill(BasketStore("u-1"), apple=2)
    _placed(lifecycle, store)

    store.remove_item("apple")
    updated = lifecycle.commit_basket(store, None, MONDAY)

    assert isinstance(updated, Order)
    assert updated.status is OrderStatus.PLACED
    assert updated.total == Decimal("0")


def test_concurrent_commits_from_same_revision_conflict(
    lifecycle: OrderLifecycleMachine, schedule: PickupScheduleCalculator
) -> None:
    first = fill(BasketStore("u-1"), apple=2)
    order = _placed(lifecycle, first)

    second = BasketStore("u-1")
    second.bind_to_order(order.id, schedule.date_key(order.pickup_at), order.items, order.version)

    fill(first, apple=3)
    fill(second, apple=7)
    assert isinstance(lifecycle.commit_basket(first, None, MONDAY), Order)

    result = lifecycle.commit_basket(second, None, MONDAY)
    assert isinstance(result, EngineError)
    assert result.kind is ErrorKind.CONFLICT


def test_update_after_deadline_is_rejected(lifecycle: OrderLifecycleMachine) -> None:
    store = fill(BasketStore("u-1"), apple=2)
    _placed(lifecycle, store)

    fill(store, apple=3)
    result = lifecycle.commit_basket(store, None, WEDNESDAY)

    assert isinstance(result, EngineError)
    assert result.kind is ErrorKind.EDIT_WINDOW_CLOSED


def test_update_of_missing_order_is_not_found(lifecycle: OrderLifecycleMachine) -> None:
    store = fill(BasketStore("u-1"), apple=2)
    store.bind_to_order("missing", "20251113", store.snapshot().items.values(), 1)

    result = lifecycle.commit_basket(store, None, MONDAY)

    assert isinstance(result, EngineError)
    assert result.kind is ErrorKind.NOT_FOUND


def test_cancel_moves_order_to_cancelled(
    lifecycle: OrderLifecycleMachine, persistence: InMemoryOrderPersistence
) -> None:
    store = fill(BasketStore("u-1"), apple=2)
    order = _placed(lifecycle, store)

    assert lifecycle.cancel(order.id, MONDAY, owner_id="u-1") is None

    stored = persistence.load_order(order.id)
    assert stored is not None
    assert stored.status is OrderStatus.CANCELLED
    assert stored.version == 2

    again = lifecycle.cancel(order.id, MONDAY)
    assert isinstance(again, EngineError)
    assert again.kind is ErrorKind.ALREADY_TERMINAL

    fill(store, apple=3)
    commit = lifecycle.commit_basket(store, None, MONDAY)
    assert isinstance(commit, EngineError)
    assert commit.kind is ErrorKind.ALREADY_TERMINAL


def test_cancel_unknown_or_foreign_order_is_not_found(lifecycle: OrderLifecycleMachine) -> None:
    order = _placed(lifecycle, fill(BasketStore("u-1"), apple=2))

    for order_id, owner_id in (("missing", None), (order.id, "u-2")):
        error = lifecycle.cancel(order_id, MONDAY, owner_id=owner_id)
        assert isinstance(error, EngineError)
        assert error.kind is ErrorKind.NOT_FOUND


def test_locked_order_can_still_be_cancelled(lifecycle: OrderLifecycleMachine) -> None:
    order = _placed(lifecycle, fill(BasketStore("u-1"), apple=2))
    lifecycle.sweep_deadlines(WEDNESDAY)

    assert lifecycle.cancel(order.id, WEDNESDAY) is None


def test_sweep_deadlines_locks_once(
    lifecycle: OrderLifecycleMachine, persistence: InMemoryOrderPersistence
) -> None:
    store = fill(BasketStore("u-1"), apple=2)
    order = _placed(lifecycle, store)
    later = _placed(lifecycle, fill(BasketStore("u-2"), apple=1))
    lifecycle.commit_basket(fill(BasketStore("u-3"), apple=1), NEXT_PICKUP, MONDAY)

    assert lifecycle.sweep_deadlines(DEADLINE) == []

    locked = lifecycle.sweep_deadlines(WEDNESDAY)
    assert {o.id for o in locked} == {order.id, later.id}
    assert all(o.status is OrderStatus.LOCKED for o in locked)
    assert lifecycle.sweep_deadlines(WEDNESDAY) == []

    stored = persistence.load_order(order.id)
    assert stored is not None and stored.status is OrderStatus.LOCKED

    fill(store, apple=9)
    result = lifecycle.commit_basket(store, None, WEDNESDAY)
    assert isinstance(result, EngineError)
    assert result.kind is ErrorKind.EDIT_WINDOW_CLOSED


def test_sweep_deadlines_scoped_to_owner(lifecycle: OrderLifecycleMachine) -> None:
    mine = _placed(lifecycle, fill(BasketStore("u-1"), apple=2))
    _placed(lifecycle, fill(BasketStore("u-2"), apple=2))

    locked = lifecycle.sweep_deadlines(WEDNESDAY, owner_id="u-1")

    assert [o.id for o in locked] == [mine.id]


def test_test_offset_shifts_stored_pickup_only(
    persistence: InMemoryOrderPersistence, schedule: PickupScheduleCalculator
) -> None:
    lifecycle = OrderLifecycleMachine(persistence, schedule, offset_days=-3)

    order = lifecycle.commit_basket(fill(BasketStore("u-1"), apple=1), PICKUP, MONDAY)

    assert isinstance(order, Order)
    assert order.offset_days == -3
    assert order.pickup_at == PICKUP - timedelta(days=3)
    assert order.scheduled_pickup_at == PICKUP

    # Deadline arithmetic still runs on the real pickup.
    assert lifecycle.sweep_deadlines(DEADLINE) == []
    assert len(lifecycle.sweep_deadlines(WEDNESDAY)) == 1


def test_illegal_transition_raises(
    lifecycle: OrderLifecycleMachine, persistence: InMemoryOrderPersistence
) -> None:
    order = _placed(lifecycle, fill(BasketStore("u-1"), apple=1))
    lifecycle.cancel(order.id, MONDAY)
    cancelled = persistence.load_order(order.id)
    assert cancelled is not None

    assert not is_valid_transition(OrderStatus.CANCELLED, OrderStatus.PLACED)
    with pytest.raises(ValueError):
        write_transition(persistence, cancelled, OrderStatus.LOCKED, MONDAY)


def test_basket_bound_without_version_cannot_commit(
    lifecycle: OrderLifecycleMachine, schedule: PickupScheduleCalculator
) -> None:
    order = _placed(lifecycle, fill(BasketStore("u-1"), apple=2))
    store = BasketStore("u-1")
    store.bind_to_order(order.id, schedule.date_key(order.pickup_at), order.items)
    fill(store, apple=4)

    result = lifecycle.commit_basket(store, None, MONDAY)

    assert isinstance(result, EngineError)
    assert result.kind is ErrorKind.CONFLICT


def test_unversioned_basket_does_not_overwrite_newer_revision(
    lifecycle: OrderLifecycleMachine,
    persistence: InMemoryOrderPersistence,
    schedule: PickupScheduleCalculator,
) -> None:
    first = fill(BasketStore("u-1"), apple=2)
    order = _placed(lifecycle, first)
    second = BasketStore("u-1")
    second.bind_to_order(order.id, schedule.date_key(order.pickup_at), order.items)

    fill(first, apple=3)
    assert isinstance(lifecycle.commit_basket(first, None, MONDAY), Order)
    fill(second, apple=9)

    assert isinstance(lifecycle.commit_basket(second, None, MONDAY), EngineError)
    stored = persistence.load_order(order.id)
    assert stored is not None and stored.quantity_of("apple") == Decimal("3")


class _EditingPersistence(InMemoryOrderPersistence):
    """Changes the basket while an order is being written."""

    def __init__(self, store: BasketStore) -> None:
        super().__init__()
        self._store = store

    def create_order(self, order: Order) -> str:
        fill(self._store, pear=1)
        return super().create_order(order)


def test_edits_made_during_commit_are_kept(schedule: PickupScheduleCalculator) -> None:
    store = fill(BasketStore("u-1"), apple=2)
    lifecycle = OrderLifecycleMachine(_EditingPersistence(store), schedule)

    order = lifecycle.commit_basket(store, PICKUP, MONDAY)

    assert isinstance(order, Order)
    assert [i.product_id for i in order.items] == ["apple"]
    snapshot = store.snapshot()
    assert snapshot.bound_order_id == order.id
    assert snapshot.bound_order_version == order.version
    assert snapshot.quantity_of("pear") == Decimal("1")
    assert snapshot.quantity_of("apple") == Decimal("2")
    assert store.is_modified()
