"""Settings for the chat history core, read from ``CHAT_HISTORY_*`` variables."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class HistorySettings(BaseSettings):
    backend: Literal["memory", "sqlite"] = "memory"

    # SQLite backend
    db_path: Path = Path("chat_history.db")
    sqlite_timeout: float = 5.0
    wal_mode: bool = True

    model_config = SettingsConfigDict(env_prefix="CHAT_HISTORY_")


@lru_cache
def get_settings() -> HistorySettings:
    """Settings loaded once per process."""
    return HistorySettings()
