"""In-memory storage backend."""

import asyncio
import contextlib
from typing import AsyncIterator, Dict, List, Optional
from uuid import uuid4

import structlog

from ..domain.exceptions import ConversationNotFoundError
from ..domain.models import Clock, ConversationState, Message, MessageCreate, as_utc, utc_now
from .base import ConversationStateStore, MessageStore, StorageBackend

logger = structlog.get_logger()


class InMemoryMessageStore(MessageStore):
    """Message logs held in a dict of lists."""

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or utc_now
        self._messages: Dict[str, List[Message]] = {}

    async def append(self, conversation_id: str, draft: MessageCreate) -> Message:
        log = self._messages.setdefault(conversation_id, [])
        timestamp = as_utc(self._clock())
        if log and log[-1].timestamp > timestamp:
            timestamp = log[-1].timestamp
        message = Message(
            **{**draft.model_dump(), "chat_id": conversation_id, "id": uuid4(), "timestamp": timestamp}
        )
        log.append(message.model_copy(deep=True))
        return message.model_copy(deep=True)

    async def read_all(self, conversation_id: str) -> List[Message]:
        return [m.model_copy(deep=True) for m in self._messages.get(conversation_id, [])]

    async def count(self, conversation_id: str) -> int:
        return len(self._messages.get(conversation_id, []))

    async def delete_conversation(self, conversation_id: str) -> None:
        if self._messages.pop(conversation_id, None) is None:
            raise ConversationNotFoundError(conversation_id)

    def snapshot(self, conversation_id: str) -> Optional[List[Message]]:
        log = self._messages.get(conversation_id)
        return list(log) if log is not None else None

    def restore(self, conversation_id: str, log: Optional[List[Message]]) -> None:
        if log is None:
            self._messages.pop(conversation_id, None)
        else:
            self._messages[conversation_id] = log


class InMemoryStateStore(ConversationStateStore):
    """State records held in an insertion-ordered dict."""

    def __init__(self) -> None:
        self._states: Dict[str, ConversationState] = {}

    async def get(self, conversation_id: str) -> Optional[ConversationState]:
        state = self._states.get(conversation_id)
        return state.model_copy(deep=True) if state is not None else None

    async def put(self, state: ConversationState) -> None:
        self._states[state.id] = state.model_copy(deep=True)

    async def list_all(self) -> List[ConversationState]:
        return [state.model_copy(deep=True) for state in self._states.values()]

    async def remove(self, conversation_id: str) -> None:
        if self._states.pop(conversation_id, None) is None:
            raise ConversationNotFoundError(conversation_id)

    def snapshot(self) -> Dict[str, ConversationState]:
        return dict(self._states)

    def restore(self, states: Dict[str, ConversationState]) -> None:
        self._states = states


class InMemoryBackend(StorageBackend):
    """Volatile backend for tests and ephemeral sessions."""

    name = "memory"

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self.messages = InMemoryMessageStore(clock=clock)
        self.states = InMemoryStateStore()
        self._async_lock = asyncio.Lock()

    async def initialize(self) -> None:
        logger.info("store_initialized", backend=self.name)

    @contextlib.asynccontextmanager
    async def transaction(self, conversation_id: str) -> AsyncIterator[None]:
        async with self._async_lock:
            saved_log = self.messages.snapshot(conversation_id)
            saved_states = self.states.snapshot()
            try:
                yield
            except BaseException:
                self.messages.restore(conversation_id, saved_log)
                self.states.restore(saved_states)
                logger.warning("transaction_rolled_back", backend=self.name, conversation_id=conversation_id)
                raise

    @contextlib.asynccontextmanager
    async def reading(self) -> AsyncIterator[None]:
        # Store reads never suspend while the lock is held.
        async with self._async_lock:
            yield
