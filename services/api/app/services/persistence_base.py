from __future__ import annotations

from collections.abc import Collection
from typing import Protocol

from services.api.app.services.domain import Order, OrderStatus
from services.api.app.services.order_feed import OrderSubscription


class PersistenceCollaborator(Protocol):
    """Order storage as seen by the engine.

    Implementations raise `PersistenceError` subclasses for transport/storage failures only.
    A version mismatch is an expected outcome and is reported by `update_order` returning False.
    """

    name: str

    def create_order(self, order: Order) -> str:
        """Store a new order and return its assigned id. `order.id` is ignored."""
        ...

    def update_order(self, order: Order, expected_version: int) -> bool:
        """Replace the stored order iff its version still equals `expected_version`."""
        ...

    def load_order(self, order_id: str) -> Order | None: ...

    def list_orders_for_owner(
        self, owner_id: str, statuses: Collection[OrderStatus] | None = None
    ) -> list[Order]: ...

    def list_orders(self, statuses: Collection[OrderStatus] | None = None) -> list[Order]: ...

    def subscribe_to_owner_orders(self, owner_id: str) -> OrderSubscription: ...
