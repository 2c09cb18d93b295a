from __future__ import annotations

from pathlib import Path
from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
import os


def _default_base_dir() -> Path:
    return Path(os.getenv("RS_HOME") or Path.home() / ".rundown-sync")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RS_", case_sensitive=False)

    app_name: str = "Rundown Sync"

    base_dir: Path = Field(default_factory=_default_base_dir)
    data_dir: Path = Field(default_factory=lambda: _default_base_dir() / "data")
    logs_dir: Path = Field(default_factory=lambda: _default_base_dir() / "logs")
    database_path: Path = Field(default_factory=lambda: _default_base_dir() / "data" / "rundown_tree.db")

    # Keep the shared tree in SQLite; False keeps it in process memory only
    persist_tree: bool = True

    undo_capacity: int = 25
    history_limit: int = 100
    presence_liveness_seconds: int = 120
    presence_heartbeat_seconds: int = 30
    # Width given to untimed segments when checking resource overlaps
    untimed_conflict_window_seconds: int = 30

    cors_origins: List[str] = Field(
        default_factory=lambda: [
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ]
    )

    def ensure_dirs(self) -> None:
        for d in [self.base_dir, self.data_dir, self.logs_dir]:
            d.mkdir(parents=True, exist_ok=True)
