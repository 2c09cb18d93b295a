from __future__ import annotations

from pathlib import Path

from sqlmodel import SQLModel, create_engine
from sqlalchemy.engine import Engine
from rundown_sync.config import Settings

_settings = Settings()


def make_engine(database_path: Path) -> Engine:
    return create_engine(f"sqlite:///{database_path}", connect_args={"check_same_thread": False})


# SQLite with WAL enabled
engine: Engine = make_engine(_settings.database_path)


def init_db(target: Engine | None = None) -> None:
    eng = target or engine
    with eng.begin() as conn:
        conn.exec_driver_sql("PRAGMA journal_mode=WAL;")
        conn.exec_driver_sql("PRAGMA synchronous=NORMAL;")
    SQLModel.metadata.create_all(eng)
