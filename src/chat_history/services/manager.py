"""
Chat History Manager

The single entry point for recording and reading conversation history. It
composes the message store, the state aggregator and the history query
engine over one storage backend, and makes every mutation touch the log and
the state record together.

Conversations are created lazily by their first message and destroyed only
through delete_chat. The manager does not serialize callers beyond what its
backend does: at most one writer per conversation is assumed.
"""

from typing import Any, Dict, List, Optional, Union

from structlog import get_logger

from ..domain.exceptions import (
    ConsistencyFaultError,
    ConversationNotFoundError,
    InvalidHistoryOptionError,
)
from ..domain.models import (
    ConversationSnapshot,
    ConversationState,
    HistoryOptions,
    Message,
    MessageCreate,
    check_json_native,
)
from ..repositories.base import StorageBackend
from .aggregator import ConversationStateAggregator
from .history import HistoryQueryEngine
from .metrics import CONSISTENCY_FAULTS, CONVERSATIONS_DELETED, HISTORY_QUERIES, MESSAGES_APPENDED

logger = get_logger()


class ChatHistoryManager:
    """Facade over a storage backend fixed at construction."""

    def __init__(self, backend: StorageBackend) -> None:
        self._backend = backend
        self._messages = backend.messages
        self._aggregator = ConversationStateAggregator(backend.states)
        self._queries = HistoryQueryEngine(backend.messages)

    @property
    def backend_name(self) -> str:
        return self._backend.name

    async def __aenter__(self) -> "ChatHistoryManager":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        """Release the backend."""
        await self._backend.close()

    async def add_message(
        self,
        message: Union[MessageCreate, Dict[str, Any]],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Message:
        """
        Append a message and update its conversation's state as one unit.
        The id and timestamp are assigned here, never by the caller.
        ``metadata`` is recorded only when this message creates the
        conversation and is ignored afterwards.

        Raises:
            ConsistencyFaultError: the state could not follow the append;
                the append is rolled back.
        """
        draft = message if isinstance(message, MessageCreate) else MessageCreate.model_validate(message)
        check_json_native(metadata, "metadata key")
        conversation_id = draft.chat_id

        try:
            async with self._backend.transaction(conversation_id):
                recorded = await self._messages.append(conversation_id, draft)
                try:
                    state = await self._aggregator.on_append(conversation_id, recorded, metadata=metadata)
                except Exception as e:
                    raise ConsistencyFaultError(conversation_id, f"state update failed after append: {e}") from e

                log_length = await self._messages.count(conversation_id)
                if state.message_count != log_length:
                    raise ConsistencyFaultError(
                        conversation_id,
                        f"message_count {state.message_count} does not match log length {log_length}",
                    )
        except ConsistencyFaultError as e:
            CONSISTENCY_FAULTS.labels(backend=self.backend_name).inc()
            logger.error("consistency_fault", conversation_id=conversation_id, error=str(e))
            raise

        MESSAGES_APPENDED.labels(backend=self.backend_name).inc()
        logger.info(
            "message_added",
            conversation_id=conversation_id,
            message_id=str(recorded.id),
            message_role=recorded.role,
            message_count=state.message_count,
        )
        return recorded

    async def get_history(
        self,
        conversation_id: str,
        options: Optional[Union[HistoryOptions, Dict[str, Any]]] = None,
    ) -> List[Message]:
        """Messages of a conversation filtered by range, then limited to the most recent."""
        if options is not None and not isinstance(options, HistoryOptions):
            options = HistoryOptions.model_validate(options)
        try:
            async with self._backend.reading():
                messages = await self._queries.query(conversation_id, options)
        except InvalidHistoryOptionError as e:
            logger.warning("invalid_history_options", conversation_id=conversation_id, error=str(e))
            raise
        HISTORY_QUERIES.labels(backend=self.backend_name).inc()
        return messages

    async def get_state(self, conversation_id: str) -> Optional[ConversationState]:
        async with self._backend.reading():
            return await self._aggregator.get(conversation_id)

    async def get_chat(self, conversation_id: str) -> ConversationSnapshot:
        """Return a conversation's state together with its full log."""
        async with self._backend.reading():
            state = await self._aggregator.get(conversation_id)
            messages = await self._messages.read_all(conversation_id) if state is not None else []
        if state is None:
            logger.warning("conversation_not_found", conversation_id=conversation_id)
            raise ConversationNotFoundError(conversation_id)
        return ConversationSnapshot(state=state, messages=messages)

    async def list_conversations(self, limit: Optional[int] = None, offset: int = 0) -> List[ConversationState]:
        """List conversation states in storage order, optionally paginated."""
        if limit is not None and limit <= 0:
            raise InvalidHistoryOptionError(f"limit must be a positive integer, got {limit}")
        if offset < 0:
            raise InvalidHistoryOptionError(f"offset must not be negative, got {offset}")

        async with self._backend.reading():
            states = await self._aggregator.list_all()
        if limit is None:
            return states[offset:]
        return states[offset : offset + limit]

    async def delete_chat(self, conversation_id: str) -> None:
        """
        Remove a conversation's log and state together.

        Raises:
            ConversationNotFoundError: no state exists; nothing is touched.
            ConsistencyFaultError: state existed without a log.
        """
        try:
            async with self._backend.transaction(conversation_id):
                if await self._aggregator.get(conversation_id) is None:
                    raise ConversationNotFoundError(conversation_id)
                try:
                    await self._messages.delete_conversation(conversation_id)
                except ConversationNotFoundError as e:
                    raise ConsistencyFaultError(conversation_id, "state record has no message log") from e
                await self._aggregator.remove(conversation_id)
        except ConversationNotFoundError:
            logger.warning("conversation_not_found", conversation_id=conversation_id)
            raise
        except ConsistencyFaultError as e:
            CONSISTENCY_FAULTS.labels(backend=self.backend_name).inc()
            logger.error("consistency_fault", conversation_id=conversation_id, error=str(e))
            raise

        CONVERSATIONS_DELETED.labels(backend=self.backend_name).inc()
        logger.info("conversation_deleted", conversation_id=conversation_id)
