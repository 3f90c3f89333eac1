"""Reconciliation between the working basket and the owner's editable order.

On session start (or when basket editing resumes) the most recent editable order is loaded into
an unbound basket. When the basket and the stored order disagree about which order or which
revision is current, both sides are reported as a conflict; nothing is overwritten until the
caller picks a resolution.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

import structlog

from services.api.app.services.basket_store import BasketStore
from services.api.app.services.domain import ZERO, Basket, LineItem, Order, OrderStatus
from services.api.app.services.errors import EngineError, ErrorKind
from services.api.app.services.persistence_base import PersistenceCollaborator
from services.api.app.services.schedule import PickupScheduleCalculator

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ItemReconciliation:
    product_id: str
    current_quantity: Decimal
    committed_quantity: Decimal

    @property
    def has_changed(self) -> bool:
        return self.current_quantity != self.committed_quantity

    @property
    def is_removal(self) -> bool:
        """The item is committed but has been set to zero locally."""
        return self.committed_quantity > ZERO and self.current_quantity == ZERO


class ConflictReason(str, Enum):
    # Unbound draft items while the owner already has an editable order.
    DRAFT_VS_ORDER = "DRAFT_VS_ORDER"
    # Basket bound to a different order than the one storage reports as editable.
    DIFFERENT_ORDER = "DIFFERENT_ORDER"
    # Same order, but it was rewritten elsewhere while the basket had local edits.
    REMOTE_REVISION = "REMOTE_REVISION"


@dataclass(frozen=True, slots=True)
class ReconciliationConflict:
    reason: ConflictReason
    local_basket: Basket
    remote_order: Order

    def as_error(self) -> EngineError:
        return EngineError(
            ErrorKind.CONFLICT,
            "Your basket and your saved order differ. Choose which version to keep.",
        )


@dataclass(frozen=True, slots=True)
class ReconciliationResult:
    basket: Basket
    order: Order | None = None
    items: Mapping[str, ItemReconciliation] = field(default_factory=dict)
    is_editable: bool = True
    conflict: ReconciliationConflict | None = None
    loaded: bool = False
    released: bool = False

    @property
    def is_divergent(self) -> bool:
        return any(item.has_changed for item in self.items.values())

    @property
    def changed_items(self) -> list[ItemReconciliation]:
        return [item for item in self.items.values() if item.has_changed]


def diff_items(
    current: Mapping[str, LineItem], committed: Iterable[LineItem]
) -> dict[str, ItemReconciliation]:
    """Per product id across both sides; an absent item counts as quantity 0."""

    committed_map = {item.product_id: item for item in committed}
    product_ids = list(committed_map) + [pid for pid in current if pid not in committed_map]

    out: dict[str, ItemReconciliation] = {}
    for pid in product_ids:
        out[pid] = ItemReconciliation(
            product_id=pid,
            current_quantity=current[pid].quantity if pid in current else ZERO,
            committed_quantity=committed_map[pid].quantity if pid in committed_map else ZERO,
        )
    return out


class MergeConflictType(str, Enum):
    ITEM_ADDED = "ITEM_ADDED"
    ITEM_REMOVED = "ITEM_REMOVED"
    QUANTITY_CHANGED = "QUANTITY_CHANGED"


class MergeResolution(str, Enum):
    ADD = "ADD"
    KEEP_EXISTING = "KEEP_EXISTING"
    USE_NEW = "USE_NEW"
    UNDECIDED = "UNDECIDED"


@dataclass(frozen=True, slots=True)
class MergeConflict:
    product_id: str
    conflict_type: MergeConflictType
    existing_quantity: Decimal
    new_quantity: Decimal
    resolution: MergeResolution


_DEFAULT_RESOLUTION = {
    MergeConflictType.ITEM_ADDED: MergeResolution.USE_NEW,
    MergeConflictType.ITEM_REMOVED: MergeResolution.KEEP_EXISTING,
    MergeConflictType.QUANTITY_CHANGED: MergeResolution.UNDECIDED,
}


def merge_conflicts(
    local_items: Mapping[str, LineItem], remote_items: Iterable[LineItem]
) -> list[MergeConflict]:
    conflicts: list[MergeConflict] = []
    for pid, item in diff_items(local_items, remote_items).items():
        if not item.has_changed:
            continue
        if item.committed_quantity == ZERO:
            conflict_type = MergeConflictType.ITEM_ADDED
        elif item.current_quantity == ZERO:
            conflict_type = MergeConflictType.ITEM_REMOVED
        else:
            conflict_type = MergeConflictType.QUANTITY_CHANGED
        conflicts.append(
            MergeConflict(
                product_id=pid,
                conflict_type=conflict_type,
                existing_quantity=item.committed_quantity,
                new_quantity=item.current_quantity,
                resolution=_DEFAULT_RESOLUTION[conflict_type],
            )
        )
    return conflicts


def apply_resolutions(
    local_items: Mapping[str, LineItem],
    remote_items: Iterable[LineItem],
    conflicts: Iterable[MergeConflict],
) -> list[LineItem]:
    remote_map = {item.product_id: item for item in remote_items}
    by_product = {c.product_id: c for c in conflicts}

    merged: list[LineItem] = []
    for pid in list(remote_map) + [pid for pid in local_items if pid not in remote_map]:
        existing = remote_map.get(pid)
        new = local_items.get(pid)
        conflict = by_product.get(pid)
        resolution = conflict.resolution if conflict is not None else MergeResolution.USE_NEW

        if resolution is MergeResolution.ADD and existing is not None and new is not None:
            item = replace(
                existing, quantity=existing.quantity + new.quantity, unit_price=new.unit_price
            )
        elif resolution is MergeResolution.USE_NEW:
            item = new
        elif existing is not None:
            # KEEP_EXISTING, UNDECIDED, and ADD with only one side present.
            item = existing
        else:
            item = new

        if item is not None and item.quantity > ZERO:
            merged.append(item)
    return merged


class ResolutionStrategy(str, Enum):
    KEEP_LOCAL = "KEEP_LOCAL"
    TAKE_REMOTE = "TAKE_REMOTE"
    MERGE = "MERGE"


class ReconciliationEngine:
    def __init__(
        self, persistence: PersistenceCollaborator, schedule: PickupScheduleCalculator
    ) -> None:
        self._persistence = persistence
        self._schedule = schedule

    def find_editable_order(self, owner_id: str, now: datetime) -> Order | None:
        """Most recently created placed order of `owner_id` whose edit window is open."""

        candidates = [
            o
            for o in self._persistence.list_orders_for_owner(owner_id, (OrderStatus.PLACED,))
            if self._schedule.is_editable_at(o.scheduled_pickup_at, now)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda o: o.created_at.astimezone(timezone.utc))

    def reconcile(self, store: BasketStore, now: datetime) -> ReconciliationResult:
        local = store.snapshot()
        if local.owner_id is None:
            return ReconciliationResult(basket=local, items=diff_items(local.items, ()))

        remote = self.find_editable_order(local.owner_id, now)

        if not local.is_bound:
            if remote is None:
                return ReconciliationResult(basket=local, items=diff_items(local.items, ()))
            if local.items:
                return self._conflict(ConflictReason.DRAFT_VS_ORDER, local, remote)
            self._bind(store, remote)
            logger.info(
                "Loaded editable order into basket", order_id=remote.id, owner_id=local.owner_id
            )
            return self._result(store.snapshot(), remote, loaded=True)

        if remote is not None and remote.id != local.bound_order_id:
            return self._conflict(ConflictReason.DIFFERENT_ORDER, local, remote)

        assert local.bound_order_id is not None
        bound = remote or self._persistence.load_order(local.bound_order_id)
        if bound is None or bound.status.is_terminal or bound.owner_id != local.owner_id:
            store.clear()
            logger.info(
                "Released basket from closed order",
                order_id=local.bound_order_id,
                owner_id=local.owner_id,
            )
            return ReconciliationResult(basket=store.snapshot(), released=True)

        editable = self._editable(bound, now)
        # An unknown bound version counts as stale.
        if bound.version != local.bound_order_version:
            if store.is_modified():
                return self._conflict(
                    ConflictReason.REMOTE_REVISION, local, bound, is_editable=editable
                )
            # No local edits: the newer revision can be adopted as-is.
            self._bind(store, bound)
            return self._result(store.snapshot(), bound, is_editable=editable, loaded=True)

        return self._result(local, bound, is_editable=editable)

    def resolve(
        self,
        store: BasketStore,
        conflict: ReconciliationConflict,
        strategy: ResolutionStrategy,
        resolutions: Mapping[str, MergeResolution] | None = None,
        *,
        now: datetime | None = None,
    ) -> ReconciliationResult:
        """Apply the caller's choice for a reported conflict.

        KEEP_LOCAL keeps the working items. For a draft or a remote revision they are rebased on
        the remote order, so the next commit deliberately overwrites it; a basket bound to a
        different order stays bound to its own order. TAKE_REMOTE discards local edits. MERGE
        combines both per `resolutions` (defaults per conflict type otherwise).
        """

        remote = conflict.remote_order
        local = conflict.local_basket
        local_items = local.items

        if (
            strategy is ResolutionStrategy.KEEP_LOCAL
            and conflict.reason is ConflictReason.DIFFERENT_ORDER
        ):
            assert local.bound_order_id is not None
            own = self._persistence.load_order(local.bound_order_id)
            logger.info(
                "Reconciliation conflict resolved",
                order_id=local.bound_order_id,
                reason=conflict.reason.value,
                strategy=strategy.value,
            )
            if own is None:
                return ReconciliationResult(basket=store.snapshot(), is_editable=False)
            return self._result(store.snapshot(), own, is_editable=self._editable(own, now))

        if strategy is ResolutionStrategy.TAKE_REMOTE:
            items: Iterable[LineItem] = remote.items
        elif strategy is ResolutionStrategy.KEEP_LOCAL:
            items = local_items.values()
        else:
            planned = merge_conflicts(local_items, remote.items)
            if resolutions:
                planned = [
                    replace(c, resolution=resolutions.get(c.product_id, c.resolution))
                    for c in planned
                ]
            items = apply_resolutions(local_items, remote.items, planned)

        self._bind(store, remote, items=items)
        logger.info(
            "Reconciliation conflict resolved",
            order_id=remote.id,
            reason=conflict.reason.value,
            strategy=strategy.value,
        )
        return self._result(store.snapshot(), remote, is_editable=self._editable(remote, now))

    def _editable(self, order: Order, now: datetime | None) -> bool:
        if not order.status.is_editable:
            return False
        return now is None or self._schedule.is_editable_at(order.scheduled_pickup_at, now)

    def _bind(
        self, store: BasketStore, order: Order, items: Iterable[LineItem] | None = None
    ) -> None:
        store.bind_to_order(
            order.id,
            self._schedule.date_key(order.pickup_at),
            order.items if items is None else items,
            order.version,
            baseline=order.items,
        )

    def _result(
        self,
        basket: Basket,
        order: Order,
        *,
        is_editable: bool = True,
        loaded: bool = False,
    ) -> ReconciliationResult:
        return ReconciliationResult(
            basket=basket,
            order=order,
            items=diff_items(basket.items, order.items),
            is_editable=is_editable,
            loaded=loaded,
        )

    def _conflict(
        self,
        reason: ConflictReason,
        local: Basket,
        remote: Order,
        *,
        is_editable: bool = True,
    ) -> ReconciliationResult:
        logger.info(
            "Reconciliation conflict detected",
            reason=reason.value,
            owner_id=local.owner_id,
            local_order_id=local.bound_order_id,
            remote_order_id=remote.id,
        )
        return ReconciliationResult(
            basket=local,
            order=remote,
            items=diff_items(local.items, remote.items),
            is_editable=is_editable,
            conflict=ReconciliationConflict(reason=reason, local_basket=local, remote_order=remote),
        )
