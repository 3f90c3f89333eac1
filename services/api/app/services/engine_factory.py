from __future__ import annotations

from dataclasses import dataclass

from services.api.app.config import EngineConfig, load_config
from services.api.app.services.clock import Clock, SystemClock
from services.api.app.services.lifecycle import OrderLifecycleMachine
from services.api.app.services.persistence_base import PersistenceCollaborator
from services.api.app.services.persistence_factory import get_persistence
from services.api.app.services.reconciliation import ReconciliationEngine
from services.api.app.services.schedule import PickupScheduleCalculator
from services.api.app.services.sweeper import StaleOrderSweeper


@dataclass(frozen=True, slots=True)
class OrderEngine:
    config: EngineConfig
    clock: Clock
    persistence: PersistenceCollaborator
    schedule: PickupScheduleCalculator
    lifecycle: OrderLifecycleMachine
    reconciliation: ReconciliationEngine
    sweeper: StaleOrderSweeper


def build_engine(
    config: EngineConfig,
    persistence: PersistenceCollaborator,
    clock: Clock | None = None,
) -> OrderEngine:
    clock = clock or SystemClock(config.tz, offset_days=config.test_offset_days)
    schedule = PickupScheduleCalculator(config)
    sweeper = StaleOrderSweeper(persistence)
    return OrderEngine(
        config=config,
        clock=clock,
        persistence=persistence,
        schedule=schedule,
        lifecycle=OrderLifecycleMachine(
            persistence, schedule, offset_days=clock.offset_days, sweeper=sweeper
        ),
        reconciliation=ReconciliationEngine(persistence, schedule),
        sweeper=sweeper,
    )


def get_order_engine() -> OrderEngine:
    """Assemble the engine from env vars.

    The persistence adapter comes from `get_persistence()`; engine code never knows which one
    is active.
    """

    return build_engine(load_config(), get_persistence())
