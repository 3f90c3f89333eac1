from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

from services.api.app.services.basket_store import BasketStore

UTC = ZoneInfo("UTC")

# Monday before the Thursday 2025-11-13 pickup; its edit deadline is Tue 2025-11-11 23:59:59.
MONDAY = datetime(2025, 11, 10, 9, 0, tzinfo=UTC)
PICKUP = datetime(2025, 11, 13, 0, 0, tzinfo=UTC)
NEXT_PICKUP = datetime(2025, 11, 20, 0, 0, tzinfo=UTC)
DEADLINE = datetime(2025, 11, 11, 23, 59, 59, tzinfo=UTC)
# Past the deadline but before the pickup itself.
WEDNESDAY = datetime(2025, 11, 12, 10, 0, tzinfo=UTC)


def fill(store: BasketStore, **quantities: int | str) -> BasketStore:
    for product_id, quantity in quantities.items():
        error = store.set_quantity(product_id, "each", Decimal("1.50"), quantity)
        assert error is None
    return store
