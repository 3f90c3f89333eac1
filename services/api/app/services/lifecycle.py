from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import structlog

from services.api.app.services.basket_store import BasketStore
from services.api.app.services.domain import ACTIVE_STATUSES, Basket, Order, OrderStatus
from services.api.app.services.errors import EngineError, ErrorKind
from services.api.app.services.persistence_base import PersistenceCollaborator
from services.api.app.services.schedule import PickupScheduleCalculator
from services.api.app.services.sweeper import StaleOrderSweeper
from services.api.app.services.transitions import write_revision, write_transition

logger = structlog.get_logger(__name__)


class OrderLifecycleMachine:
    """Commits baskets into orders and moves orders through their states.

    Placed -> Locked (edit deadline passed) -> Completed; Placed/Locked -> Cancelled.
    Every write is conditioned on the version it was derived from.
    """

    def __init__(
        self,
        persistence: PersistenceCollaborator,
        schedule: PickupScheduleCalculator,
        *,
        offset_days: int = 0,
        sweeper: StaleOrderSweeper | None = None,
    ) -> None:
        self._persistence = persistence
        self._schedule = schedule
        self._offset_days = offset_days
        self._sweeper = sweeper or StaleOrderSweeper(persistence)

    def commit(
        self, basket: Basket, pickup_at: datetime | None, now: datetime
    ) -> Order | EngineError:
        if basket.bound_order_id is not None:
            return self._commit_update(basket, now)
        return self._commit_new(basket, pickup_at, now)

    def commit_basket(
        self, store: BasketStore, pickup_at: datetime | None, now: datetime
    ) -> Order | EngineError:
        """Commit the store's current contents and rebind it to the resulting order.

        Edits made to the store while the commit was in flight are kept as local changes.
        """

        submitted = store.snapshot()
        result = self.commit(submitted, pickup_at, now)
        if isinstance(result, Order):
            store.bind_to_order(
                result.id,
                self._schedule.date_key(result.pickup_at),
                result.items,
                result.version,
                keep_edits_since=submitted,
            )
        return result

    def _commit_update(self, basket: Basket, now: datetime) -> Order | EngineError:
        assert basket.bound_order_id is not None
        order = self._persistence.load_order(basket.bound_order_id)
        if order is None or order.owner_id != basket.owner_id:
            return EngineError(ErrorKind.NOT_FOUND, "The order being edited no longer exists.")

        if order.status.is_terminal:
            return EngineError(
                ErrorKind.ALREADY_TERMINAL,
                f"The order is {order.status.value.lower()} and can no longer be changed.",
            )

        if not order.status.is_editable or not self._schedule.is_editable_at(
            order.scheduled_pickup_at, now
        ):
            deadline = self._schedule.edit_deadline(order.scheduled_pickup_at)
            return EngineError(
                ErrorKind.EDIT_WINDOW_CLOSED,
                f"Changes were possible until {deadline.isoformat()}.",
            )

        # A basket bound without a version cannot prove it saw the current revision.
        if basket.bound_order_version is None or order.version != basket.bound_order_version:
            return EngineError(
                ErrorKind.CONFLICT,
                "The order was changed elsewhere. Reload it before committing again.",
            )

        written = write_revision(self._persistence, order, now, items=tuple(basket.items.values()))
        if written is None:
            return EngineError(
                ErrorKind.CONFLICT,
                "The order was changed elsewhere. Reload it before committing again.",
            )

        logger.info(
            "Order updated",
            order_id=written.id,
            owner_id=written.owner_id,
            version=written.version,
            item_count=len(written.items),
        )
        return written

    def _commit_new(
        self, basket: Basket, pickup_at: datetime | None, now: datetime
    ) -> Order | EngineError:
        if basket.owner_id is None:
            return EngineError(ErrorKind.SIGN_IN_REQUIRED, "Sign in to place an order.")

        if not basket.items:
            return EngineError(ErrorKind.EMPTY_BASKET, "The basket is empty.")

        if pickup_at is None or not self._schedule.is_valid_pickup_instant(pickup_at):
            return EngineError(
                ErrorKind.NO_PICKUP_SELECTED, "Choose one of the offered pickup dates."
            )

        pickup_at = self._schedule.localize(pickup_at)
        if not self._schedule.is_editable_at(pickup_at, now):
            deadline = self._schedule.edit_deadline(pickup_at)
            return EngineError(
                ErrorKind.PICKUP_WINDOW_EXPIRED,
                f"Orders for this pickup closed at {deadline.isoformat()}.",
            )

        pickup_key = self._schedule.date_key(pickup_at)
        for existing in self._persistence.list_orders_for_owner(basket.owner_id, ACTIVE_STATUSES):
            if self._schedule.date_key(existing.scheduled_pickup_at) == pickup_key:
                return EngineError(
                    ErrorKind.CONFLICT,
                    "An order for this pickup already exists. Load it to make changes.",
                )

        order = Order(
            id="",
            owner_id=basket.owner_id,
            created_at=now,
            pickup_at=pickup_at + timedelta(days=self._offset_days),
            items=tuple(basket.items.values()),
            status=OrderStatus.PLACED,
            version=1,
            offset_days=self._offset_days,
            updated_at=now,
        )
        order = replace(order, id=self._persistence.create_order(order))

        logger.info(
            "Order placed",
            order_id=order.id,
            owner_id=order.owner_id,
            pickup_at=order.pickup_at.isoformat(),
            offset_days=order.offset_days,
            item_count=len(order.items),
        )
        return order

    def cancel(
        self, order_id: str, now: datetime, owner_id: str | None = None
    ) -> EngineError | None:
        order = self._persistence.load_order(order_id)
        if order is None or (owner_id is not None and order.owner_id != owner_id):
            return EngineError(ErrorKind.NOT_FOUND, f"Order {order_id} not found.")

        if order.status.is_terminal:
            return EngineError(
                ErrorKind.ALREADY_TERMINAL, f"The order is already {order.status.value.lower()}."
            )

        if write_transition(self._persistence, order, OrderStatus.CANCELLED, now) is None:
            return EngineError(
                ErrorKind.CONFLICT, "The order was changed elsewhere. Reload it and try again."
            )

        logger.info("Order cancelled", order_id=order.id, owner_id=order.owner_id)
        return None

    def sweep_deadlines(self, now: datetime, owner_id: str | None = None) -> list[Order]:
        """Lock every placed order whose edit deadline is behind `now`. Safe to re-run."""

        if owner_id is None:
            placed = self._persistence.list_orders((OrderStatus.PLACED,))
        else:
            placed = self._persistence.list_orders_for_owner(owner_id, (OrderStatus.PLACED,))

        now_utc = now.astimezone(timezone.utc)
        locked: list[Order] = []
        for order in placed:
            deadline = self._schedule.edit_deadline(order.scheduled_pickup_at)
            if deadline.astimezone(timezone.utc) >= now_utc:
                continue

            written = write_transition(self._persistence, order, OrderStatus.LOCKED, now)
            if written is None:
                logger.debug("Skipped deadline lock after version change", order_id=order.id)
                continue
            locked.append(written)
            logger.info("Order locked", order_id=order.id, deadline=deadline.isoformat())

        return locked

    def sweep_stale_completions(self, now: datetime, owner_id: str | None = None) -> list[Order]:
        return self._sweeper.sweep_stale_completions(now, owner_id)
