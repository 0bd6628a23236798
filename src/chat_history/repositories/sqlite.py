"""Persistent storage backend on an embedded SQLite database."""

import asyncio
import contextlib
import json
from contextvars import ContextVar
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncIterator, List, Optional, Union
from uuid import UUID, uuid4

import aiosqlite
import structlog

from ..domain.exceptions import ChatHistoryError, ConversationNotFoundError
from ..domain.models import Clock, ConversationState, Message, MessageCreate, as_utc, utc_now
from .base import ConversationStateStore, MessageStore, StorageBackend

logger = structlog.get_logger()

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Backend whose write transaction the current task is inside.
_active_writer: ContextVar[Optional["SqliteBackend"]] = ContextVar("chat_history_active_writer", default=None)

SCHEMA = """
CREATE TABLE IF NOT EXISTS messages (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    chat_id TEXT NOT NULL,
    timestamp_us INTEGER NOT NULL,
    payload TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_messages_chat ON messages (chat_id, seq);
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    created_at_us INTEGER NOT NULL,
    updated_at_us INTEGER NOT NULL,
    message_count INTEGER NOT NULL
);
"""

MIGRATIONS = [
    "ALTER TABLE conversations ADD COLUMN metadata TEXT",
]


def to_micros(value: datetime) -> int:
    return (as_utc(value) - EPOCH) // timedelta(microseconds=1)


def from_micros(value: int) -> datetime:
    return EPOCH + timedelta(microseconds=value)


class _Connected:
    """Mixin for stores that share the backend's connection."""

    def __init__(self, backend: "SqliteBackend") -> None:
        self._backend = backend

    @property
    def _conn(self) -> aiosqlite.Connection:
        return self._backend.connection()


class SqliteMessageStore(_Connected, MessageStore):
    """Message logs in the ``messages`` table, ordered by ``seq``."""

    def __init__(self, backend: "SqliteBackend", clock: Optional[Clock] = None) -> None:
        super().__init__(backend)
        self._clock = clock or utc_now

    async def append(self, conversation_id: str, draft: MessageCreate) -> Message:
        conn = self._conn
        timestamp = as_utc(self._clock())
        async with conn.execute(
            "SELECT timestamp_us FROM messages WHERE chat_id = ? ORDER BY seq DESC LIMIT 1",
            (conversation_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is not None and row[0] > to_micros(timestamp):
            timestamp = from_micros(row[0])

        message = Message(
            **{**draft.model_dump(), "chat_id": conversation_id, "id": uuid4(), "timestamp": timestamp}
        )
        payload = message.model_dump(mode="json", exclude={"id", "chat_id", "timestamp"})
        await conn.execute(
            "INSERT INTO messages (id, chat_id, timestamp_us, payload) VALUES (?, ?, ?, ?)",
            (str(message.id), conversation_id, to_micros(message.timestamp), json.dumps(payload)),
        )
        return message

    async def read_all(self, conversation_id: str) -> List[Message]:
        async with self._conn.execute(
            "SELECT id, chat_id, timestamp_us, payload FROM messages WHERE chat_id = ? ORDER BY seq",
            (conversation_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_message(row) for row in rows]

    async def count(self, conversation_id: str) -> int:
        async with self._conn.execute(
            "SELECT COUNT(*) FROM messages WHERE chat_id = ?", (conversation_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return row[0]

    async def delete_conversation(self, conversation_id: str) -> None:
        cursor = await self._conn.execute("DELETE FROM messages WHERE chat_id = ?", (conversation_id,))
        if cursor.rowcount == 0:
            raise ConversationNotFoundError(conversation_id)

    @staticmethod
    def _row_to_message(row) -> Message:
        message_id, chat_id, timestamp_us, payload = row
        return Message(
            **json.loads(payload),
            id=UUID(message_id),
            chat_id=chat_id,
            timestamp=from_micros(timestamp_us),
        )


class SqliteStateStore(_Connected, ConversationStateStore):
    """State records in the ``conversations`` table, ordered by rowid."""

    async def get(self, conversation_id: str) -> Optional[ConversationState]:
        async with self._conn.execute(
            "SELECT id, created_at_us, updated_at_us, message_count, metadata FROM conversations WHERE id = ?",
            (conversation_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_state(row) if row is not None else None

    async def put(self, state: ConversationState) -> None:
        await self._conn.execute(
            """
            INSERT INTO conversations (id, created_at_us, updated_at_us, message_count, metadata)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (id) DO UPDATE SET
                created_at_us = excluded.created_at_us,
                updated_at_us = excluded.updated_at_us,
                message_count = excluded.message_count,
                metadata = excluded.metadata
            """,
            (
                state.id,
                to_micros(state.created_at),
                to_micros(state.updated_at),
                state.message_count,
                json.dumps(state.metadata) if state.metadata is not None else None,
            ),
        )

    async def list_all(self) -> List[ConversationState]:
        async with self._conn.execute(
            "SELECT id, created_at_us, updated_at_us, message_count, metadata FROM conversations ORDER BY rowid"
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_state(row) for row in rows]

    async def remove(self, conversation_id: str) -> None:
        cursor = await self._conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
        if cursor.rowcount == 0:
            raise ConversationNotFoundError(conversation_id)

    @staticmethod
    def _row_to_state(row) -> ConversationState:
        conversation_id, created_at_us, updated_at_us, message_count, metadata = row
        return ConversationState(
            id=conversation_id,
            created_at=from_micros(created_at_us),
            updated_at=from_micros(updated_at_us),
            message_count=message_count,
            metadata=json.loads(metadata) if metadata is not None else None,
        )


class SqliteBackend(StorageBackend):
    """Durable backend that survives process restarts.

    Writes go through one connection opened in autocommit mode and grouped
    with explicit ``BEGIN IMMEDIATE`` transactions, serialized by an
    ``asyncio.Lock`` because a single connection cannot hold two at once.
    Reads outside a write transaction use a second connection, so they only
    ever see committed rows.
    """

    name = "sqlite"

    def __init__(
        self,
        db_path: Union[str, Path],
        timeout: float = 5.0,
        wal_mode: bool = True,
        clock: Optional[Clock] = None,
    ) -> None:
        self._db_path = str(Path(db_path).expanduser())
        self._timeout = timeout
        self._wal_mode = wal_mode
        self._writer: Optional[aiosqlite.Connection] = None
        self._reader: Optional[aiosqlite.Connection] = None
        self._async_lock = asyncio.Lock()
        self._read_lock = asyncio.Lock()
        self.messages = SqliteMessageStore(self, clock=clock)
        self.states = SqliteStateStore(self)

    async def initialize(self) -> None:
        """Open the database file and apply the schema idempotently.

        Raises:
            aiosqlite.Error: If the database cannot be opened or the schema fails.
        """
        if self._writer is not None:
            return
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        writer = await aiosqlite.connect(self._db_path, timeout=self._timeout, isolation_level=None)
        try:
            if self._wal_mode:
                await writer.execute("PRAGMA journal_mode=WAL")
            await writer.execute("PRAGMA synchronous=NORMAL")
            await writer.executescript(SCHEMA)
            for col_ddl in MIGRATIONS:
                try:
                    await writer.execute(col_ddl)
                except aiosqlite.OperationalError:
                    pass  # column already exists
            reader = await aiosqlite.connect(self._db_path, timeout=self._timeout, isolation_level=None)
        except Exception:
            await writer.close()
            raise
        self._writer = writer
        self._reader = reader
        logger.info("store_initialized", backend=self.name, db_path=self._db_path)

    async def close(self) -> None:
        if self._writer is None:
            return
        await self._reader.close()
        await self._writer.close()
        self._writer = None
        self._reader = None
        logger.info("store_closed", backend=self.name, db_path=self._db_path)

    def _writer_or_raise(self) -> aiosqlite.Connection:
        if self._writer is None:
            raise ChatHistoryError("Store is not initialized. Call initialize() first.")
        return self._writer

    def connection(self) -> aiosqlite.Connection:
        """The writer inside this backend's write transaction, the reader elsewhere."""
        self._writer_or_raise()
        if _active_writer.get() is self:
            return self._writer
        return self._reader

    @contextlib.asynccontextmanager
    async def transaction(self, conversation_id: str) -> AsyncIterator[None]:
        conn = self._writer_or_raise()
        async with self._async_lock:
            await conn.execute("BEGIN IMMEDIATE")
            token = _active_writer.set(self)
            try:
                yield
                await conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    await conn.execute("ROLLBACK")
                logger.warning("transaction_rolled_back", backend=self.name, conversation_id=conversation_id)
                raise
            finally:
                _active_writer.reset(token)

    @contextlib.asynccontextmanager
    async def reading(self) -> AsyncIterator[None]:
        conn = self.connection()
        async with self._read_lock:
            await conn.execute("BEGIN")
            try:
                yield
            finally:
                await conn.execute("COMMIT")
