from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from services.api.app.services.domain import Order, OrderStatus
from services.api.app.services.persistence_base import PersistenceCollaborator

ALLOWED_TRANSITIONS: frozenset[tuple[OrderStatus, OrderStatus]] = frozenset(
    [
        (OrderStatus.PLACED, OrderStatus.LOCKED),
        (OrderStatus.PLACED, OrderStatus.COMPLETED),
        (OrderStatus.PLACED, OrderStatus.CANCELLED),
        (OrderStatus.LOCKED, OrderStatus.COMPLETED),
        (OrderStatus.LOCKED, OrderStatus.CANCELLED),
    ]
)


def is_valid_transition(from_status: OrderStatus, to_status: OrderStatus) -> bool:
    return (from_status, to_status) in ALLOWED_TRANSITIONS


def write_revision(
    persistence: PersistenceCollaborator,
    order: Order,
    now: datetime,
    **changes: object,
) -> Order | None:
    """Write `order` with `changes` as the next version, conditioned on its current version.

    Returns the stored revision, or None when another writer got there first.
    """

    revision = replace(order, version=order.version + 1, updated_at=now, **changes)
    if not persistence.update_order(revision, expected_version=order.version):
        return None
    return revision


def write_transition(
    persistence: PersistenceCollaborator,
    order: Order,
    status: OrderStatus,
    now: datetime,
) -> Order | None:
    if not is_valid_transition(order.status, status):
        raise ValueError(f"Illegal order transition {order.status.value} -> {status.value}")
    return write_revision(persistence, order, now, status=status)
