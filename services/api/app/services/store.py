from __future__ import annotations

import threading

from services.api.app.config import EngineConfig
from services.api.app.services.basket_store import BasketStore


class BasketRegistry:
    """One working basket per owner for the lifetime of the process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._baskets: dict[str, BasketStore] = {}

    def get_or_create(self, owner_id: str, config: EngineConfig) -> BasketStore:
        with self._lock:
            basket = self._baskets.get(owner_id)
            if basket is None:
                basket = BasketStore(owner_id, config)
                self._baskets[owner_id] = basket
            return basket

    def get(self, owner_id: str) -> BasketStore | None:
        with self._lock:
            return self._baskets.get(owner_id)

    def reset(self) -> None:
        with self._lock:
            self._baskets.clear()


baskets = BasketRegistry()
