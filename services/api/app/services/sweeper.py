"""Auto-completion of emptied orders whose pickup has passed.

Meant to be triggered on session start and periodically by an external scheduler (cron) via
the maintenance endpoint or `scripts/run_sweeps.py`. Orders that still carry value after their
pickup are deliberately left alone; nothing records whether they were actually collected.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from services.api.app.services.domain import ACTIVE_STATUSES, ZERO, Order, OrderStatus
from services.api.app.services.persistence_base import PersistenceCollaborator
from services.api.app.services.transitions import write_transition

logger = structlog.get_logger(__name__)


class StaleOrderSweeper:
    def __init__(self, persistence: PersistenceCollaborator) -> None:
        self._persistence = persistence

    def sweep_stale_completions(self, now: datetime, owner_id: str | None = None) -> list[Order]:
        if owner_id is None:
            candidates = self._persistence.list_orders(ACTIVE_STATUSES)
        else:
            candidates = self._persistence.list_orders_for_owner(owner_id, ACTIVE_STATUSES)

        now_utc = now.astimezone(timezone.utc)
        stale = [
            o
            for o in candidates
            if o.pickup_at.astimezone(timezone.utc) < now_utc and o.total == ZERO
        ]
        if not stale:
            logger.debug("No stale orders found", owner_id=owner_id)
            return []

        completed: list[Order] = []
        for order in stale:
            written = write_transition(self._persistence, order, OrderStatus.COMPLETED, now)
            if written is None:
                # Someone else moved it since we listed; their write wins.
                logger.debug("Skipped stale order after version change", order_id=order.id)
                continue
            completed.append(written)
            logger.info(
                "Auto-completed empty order",
                order_id=order.id,
                owner_id=order.owner_id,
                pickup_at=order.pickup_at.isoformat(),
            )

        logger.info("Stale order sweep complete", completed_count=len(completed))
        return completed
