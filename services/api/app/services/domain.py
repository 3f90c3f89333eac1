from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from types import MappingProxyType

ZERO = Decimal("0")


class OrderStatus(str, Enum):
    PLACED = "PLACED"
    LOCKED = "LOCKED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)

    @property
    def is_editable(self) -> bool:
        return self is OrderStatus.PLACED

    @property
    def is_active(self) -> bool:
        return not self.is_terminal


ACTIVE_STATUSES = tuple(s for s in OrderStatus if s.is_active)


@dataclass(frozen=True, slots=True)
class LineItem:
    product_id: str
    unit_label: str
    quantity: Decimal
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.quantity * self.unit_price


def items_total(items: Iterable[LineItem]) -> Decimal:
    return sum((item.line_total for item in items), ZERO)


def _frozen_items(items: Mapping[str, LineItem] | None) -> Mapping[str, LineItem]:
    return MappingProxyType(dict(items or {}))


@dataclass(frozen=True, slots=True)
class Basket:
    """Immutable snapshot of a working basket.

    `bound_order_id` is set when the basket holds edits to an already placed order;
    `bound_order_version` is the version those edits are based on.
    """

    owner_id: str | None
    items: Mapping[str, LineItem] = field(default_factory=dict)
    bound_order_id: str | None = None
    bound_order_date_key: str | None = None
    bound_order_version: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", _frozen_items(self.items))

    @property
    def is_bound(self) -> bool:
        return self.bound_order_id is not None

    @property
    def total(self) -> Decimal:
        return items_total(self.items.values())

    def quantity_of(self, product_id: str) -> Decimal:
        item = self.items.get(product_id)
        return item.quantity if item is not None else ZERO


@dataclass(frozen=True, slots=True)
class Order:
    id: str
    owner_id: str
    created_at: datetime
    pickup_at: datetime
    items: tuple[LineItem, ...]
    status: OrderStatus
    version: int = 1
    offset_days: int = 0
    updated_at: datetime | None = None

    @property
    def total(self) -> Decimal:
        return items_total(self.items)

    @property
    def scheduled_pickup_at(self) -> datetime:
        """The real pickup instant, before any non-production test offset."""
        return self.pickup_at - timedelta(days=self.offset_days)

    def quantity_of(self, product_id: str) -> Decimal:
        for item in self.items:
            if item.product_id == product_id:
                return item.quantity
        return ZERO
