from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from services.api.app.config import EngineConfig
from services.api.app.services.clock import FixedClock
from services.api.app.services.engine_factory import OrderEngine, build_engine
from services.api.app.services.lifecycle import OrderLifecycleMachine
from services.api.app.services.persistence_memory import InMemoryOrderPersistence
from services.api.app.services.reconciliation import ReconciliationEngine
from services.api.app.services.schedule import PickupScheduleCalculator
from services.api.app.services.store import baskets
from services.api.tests.helpers import MONDAY


@pytest.fixture()
def config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture()
def schedule(config: EngineConfig) -> PickupScheduleCalculator:
    return PickupScheduleCalculator(config)


@pytest.fixture()
def persistence() -> InMemoryOrderPersistence:
    return InMemoryOrderPersistence()


@pytest.fixture()
def lifecycle(
    persistence: InMemoryOrderPersistence, schedule: PickupScheduleCalculator
) -> OrderLifecycleMachine:
    return OrderLifecycleMachine(persistence, schedule)


@pytest.fixture()
def reconciliation(
    persistence: InMemoryOrderPersistence, schedule: PickupScheduleCalculator
) -> ReconciliationEngine:
    return ReconciliationEngine(persistence, schedule)


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock(MONDAY)


@pytest.fixture()
def engine(
    config: EngineConfig, persistence: InMemoryOrderPersistence, clock: FixedClock
) -> OrderEngine:
    return build_engine(config, persistence, clock)


@pytest.fixture()
def client(engine: OrderEngine, monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    monkeypatch.setenv("PICKUP_PERSISTENCE", "memory")
    monkeypatch.setattr("services.api.app.routers.orders.get_order_engine", lambda: engine)
    baskets.reset()

    from services.api.app.main import app

    with TestClient(app) as c:
        yield c

    baskets.reset()
