from __future__ import annotations

from placetrack.config import get_settings
from placetrack.db import models  # noqa: F401
from placetrack.db.base import Base
from placetrack.db.session import engine


def ensure_data_directories() -> None:
    get_settings().data_dir.mkdir(parents=True, exist_ok=True)


def init_database() -> dict[str, int]:
    ensure_data_directories()
    Base.metadata.create_all(bind=engine)
    return {"tables": len(Base.metadata.tables)}
