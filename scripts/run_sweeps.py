"""Run the deadline lock and stale-order sweeps once; meant for cron."""

from __future__ import annotations

import argparse

import structlog

from services.api.app.config import load_config
from services.api.app.db.init_db import init_db
from services.api.app.logging_config import add_context, clear_context, configure_logging
from services.api.app.services.engine_factory import get_order_engine

logger = structlog.get_logger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Lock past-deadline orders, complete empty ones")
    parser.add_argument("--owner", default=None, help="limit the sweep to one owner")
    args = parser.parse_args()

    configure_logging()
    if load_config().persistence == "sql":
        init_db()

    add_context(job="run_sweeps")
    try:
        engine = get_order_engine()
        now = engine.clock.now()
        locked = engine.lifecycle.sweep_deadlines(now, owner_id=args.owner)
        completed = engine.lifecycle.sweep_stale_completions(now, owner_id=args.owner)
        logger.info(
            "Sweeps finished",
            locked_count=len(locked),
            completed_count=len(completed),
            persistence=engine.persistence.name,
        )
    finally:
        clear_context()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
