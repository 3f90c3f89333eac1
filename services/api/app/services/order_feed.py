from __future__ import annotations

import queue
import threading
from collections.abc import Iterator

from services.api.app.services.domain import Order

_CLOSED = object()


class OrderSubscription:
    """A push stream of order writes for one owner.

    Iterate to block for the next write; `get(timeout=...)` returns None on timeout.
    Iteration ends once `close()` is called.
    """

    def __init__(self, feed: OrderFeed, owner_id: str) -> None:
        self._feed = feed
        self.owner_id = owner_id
        self._queue: queue.Queue[object] = queue.Queue()
        self._closed = False

    def _push(self, order: Order) -> None:
        if not self._closed:
            self._queue.put(order)

    def get(self, timeout: float | None = None) -> Order | None:
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            return None
        assert isinstance(item, Order)
        return item

    def drain(self) -> list[Order]:
        """Return every write already delivered, without blocking."""
        orders: list[Order] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return orders
            if isinstance(item, Order):
                orders.append(item)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._feed._remove(self)
        self._queue.put(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self) -> Iterator[Order]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                return
            assert isinstance(item, Order)
            yield item

    def __enter__(self) -> OrderSubscription:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class OrderFeed:
    """In-process fan-out of persisted order writes, keyed by owner."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: dict[str, list[OrderSubscription]] = {}

    def subscribe(self, owner_id: str) -> OrderSubscription:
        subscription = OrderSubscription(self, owner_id)
        with self._lock:
            self._subscriptions.setdefault(owner_id, []).append(subscription)
        return subscription

    def publish(self, order: Order) -> None:
        with self._lock:
            targets = list(self._subscriptions.get(order.owner_id, ()))
        for subscription in targets:
            subscription._push(order)

    def _remove(self, subscription: OrderSubscription) -> None:
        with self._lock:
            subs = self._subscriptions.get(subscription.owner_id, [])
            if subscription in subs:
                subs.remove(subscription)
            if not subs:
                self._subscriptions.pop(subscription.owner_id, None)
