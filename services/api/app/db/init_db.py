from __future__ import annotations

import os
from pathlib import Path

from services.api.app.db.database import get_engine
from services.api.app.db.models import Base


def _ensure_sqlite_dir() -> None:
    url = get_engine().url
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


def init_db() -> None:
    if os.getenv("PICKUP_DB_AUTO_CREATE", "true").strip().lower() not in {"1", "true", "yes", "y"}:
        return

    _ensure_sqlite_dir()
    Base.metadata.create_all(bind=get_engine())
