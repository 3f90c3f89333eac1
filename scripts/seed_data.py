from __future__ import annotations

import argparse
from decimal import Decimal

from services.api.app.config import load_config
from services.api.app.db.init_db import init_db
from services.api.app.logging_config import configure_logging
from services.api.app.services.basket_store import BasketStore
from services.api.app.services.domain import ACTIVE_STATUSES
from services.api.app.services.engine_factory import get_order_engine
from services.api.app.services.errors import EngineError

_DEMO_ITEMS = (
    ("apples", "kg", "3.20", "1.5"),
    ("sourdough", "loaf", "4.80", "1"),
    ("oat milk", "carton", "2.10", "2"),
)


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed demo pickup orders")
    parser.add_argument("--owner", action="append", dest="owners", default=None)
    parser.add_argument("--weeks", type=int, default=1, help="orders per owner, one per pickup")
    args = parser.parse_args()

    configure_logging()
    if load_config().persistence == "sql":
        init_db()

    engine = get_order_engine()
    now = engine.clock.now()
    pickups = engine.schedule.next_pickup_instants(now, args.weeks)

    for owner_id in args.owners or ["u-1"]:
        existing = {
            engine.schedule.date_key(o.scheduled_pickup_at)
            for o in engine.persistence.list_orders_for_owner(owner_id, ACTIVE_STATUSES)
        }
        for pickup_at in pickups:
            if engine.schedule.date_key(pickup_at) in existing:
                continue

            store = BasketStore(owner_id, engine.config)
            for product_id, unit_label, price, quantity in _DEMO_ITEMS:
                store.set_quantity(product_id, unit_label, Decimal(price), Decimal(quantity))

            result = engine.lifecycle.commit_basket(store, pickup_at, now)
            if isinstance(result, EngineError):
                print(f"Skipped owner={owner_id} pickup={pickup_at.isoformat()}: {result.message}")
                continue
            print(f"Seeded order={result.id} owner={owner_id} pickup={pickup_at.isoformat()}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
