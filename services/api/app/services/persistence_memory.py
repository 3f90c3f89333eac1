from __future__ import annotations

import threading
from collections.abc import Collection
from dataclasses import replace
from uuid import uuid4

from services.api.app.services.domain import Order, OrderStatus
from services.api.app.services.order_feed import OrderFeed, OrderSubscription


class InMemoryOrderPersistence:
    name = "memory"

    def __init__(self, feed: OrderFeed | None = None) -> None:
        self._lock = threading.Lock()
        self._orders: dict[str, Order] = {}
        self._feed = feed or OrderFeed()

    def create_order(self, order: Order) -> str:
        order_id = uuid4().hex
        stored = replace(order, id=order_id)
        with self._lock:
            self._orders[order_id] = stored
        self._feed.publish(stored)
        return order_id

    def update_order(self, order: Order, expected_version: int) -> bool:
        with self._lock:
            current = self._orders.get(order.id)
            if current is None or current.version != expected_version:
                return False
            self._orders[order.id] = order
        self._feed.publish(order)
        return True

    def load_order(self, order_id: str) -> Order | None:
        with self._lock:
            return self._orders.get(order_id)

    def list_orders_for_owner(
        self, owner_id: str, statuses: Collection[OrderStatus] | None = None
    ) -> list[Order]:
        return [o for o in self.list_orders(statuses) if o.owner_id == owner_id]

    def list_orders(self, statuses: Collection[OrderStatus] | None = None) -> list[Order]:
        with self._lock:
            orders = list(self._orders.values())
        if statuses is not None:
            wanted = set(statuses)
            orders = [o for o in orders if o.status in wanted]
        return sorted(orders, key=lambda o: o.created_at)

    def subscribe_to_owner_orders(self, owner_id: str) -> OrderSubscription:
        return self._feed.subscribe(owner_id)
