from __future__ import annotations

import os

from services.api.app.services.order_feed import OrderFeed
from services.api.app.services.persistence_base import PersistenceCollaborator
from services.api.app.services.persistence_memory import InMemoryOrderPersistence

_FEED = OrderFeed()
_MEMORY: InMemoryOrderPersistence | None = None


def get_persistence() -> PersistenceCollaborator:
    """Select the order storage adapter based on env vars.

    Defaults to the in-memory adapter so tests and local dev need no database. The in-memory
    store is a process singleton; both adapters share one order feed.
    """

    global _MEMORY

    mode = os.getenv("PICKUP_PERSISTENCE", "memory").strip().lower()

    if mode == "memory":
        if _MEMORY is None:
            _MEMORY = InMemoryOrderPersistence(feed=_FEED)
        return _MEMORY

    if mode == "sql":
        from services.api.app.services.persistence_sql import SqlOrderPersistence

        return SqlOrderPersistence(feed=_FEED)

    raise ValueError(f"Unknown PICKUP_PERSISTENCE={mode!r}. Expected memory or sql.")


def reset_memory_persistence() -> None:
    global _MEMORY
    _MEMORY = None
