"""Conversation state aggregation."""

from typing import Any, Dict, List, Optional

import structlog

from ..domain.exceptions import ConversationNotFoundError
from ..domain.models import ConversationState, Message
from ..repositories.base import ConversationStateStore

logger = structlog.get_logger()


class ConversationStateAggregator:
    """Keeps one state record per conversation in step with its log."""

    def __init__(self, store: ConversationStateStore) -> None:
        self._store = store

    async def on_append(
        self, conversation_id: str, message: Message, metadata: Optional[Dict[str, Any]] = None
    ) -> ConversationState:
        """Fold a freshly appended message into the conversation's state.

        ``metadata`` is kept only when this message creates the state record.
        """
        state = await self._store.get(conversation_id)
        if state is None:
            state = ConversationState(
                id=conversation_id,
                created_at=message.timestamp,
                updated_at=message.timestamp,
                message_count=0,
                metadata=metadata,
            )
            logger.info("conversation_created", conversation_id=conversation_id)

        state = state.model_copy(
            update={"message_count": state.message_count + 1, "updated_at": message.timestamp}
        )
        await self._store.put(state)
        return state

    async def get(self, conversation_id: str) -> Optional[ConversationState]:
        return await self._store.get(conversation_id)

    async def list_all(self) -> List[ConversationState]:
        return await self._store.list_all()

    async def remove(self, conversation_id: str) -> None:
        try:
            await self._store.remove(conversation_id)
        except ConversationNotFoundError:
            logger.warning("conversation_not_found", conversation_id=conversation_id)
            raise
