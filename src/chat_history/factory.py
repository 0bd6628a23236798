"""Construction of a history manager over the configured backend."""

from typing import Optional

import structlog

from .config import HistorySettings, get_settings
from .domain.models import Clock
from .repositories.base import StorageBackend
from .repositories.memory import InMemoryBackend
from .repositories.sqlite import SqliteBackend
from .services.manager import ChatHistoryManager

logger = structlog.get_logger()


async def create_chat_manager(
    settings: Optional[HistorySettings] = None,
    *,
    clock: Optional[Clock] = None,
) -> ChatHistoryManager:
    """Build, initialize and wrap the backend named by ``settings.backend``.

    The backend cannot be swapped afterwards; callers only see the manager.
    """
    settings = settings or get_settings()

    backend: StorageBackend
    if settings.backend == "sqlite":
        backend = SqliteBackend(
            settings.db_path,
            timeout=settings.sqlite_timeout,
            wal_mode=settings.wal_mode,
            clock=clock,
        )
    else:
        backend = InMemoryBackend(clock=clock)

    await backend.initialize()
    logger.info("chat_manager_created", backend=backend.name)
    return ChatHistoryManager(backend)
