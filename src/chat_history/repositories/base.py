"""Storage contracts shared by every backend."""

import contextlib
from abc import ABC, abstractmethod
from typing import AsyncContextManager, AsyncIterator, List, Optional

from ..domain.models import ConversationState, Message, MessageCreate


class MessageStore(ABC):
    """Append-only message logs keyed by conversation."""

    @abstractmethod
    async def append(self, conversation_id: str, draft: MessageCreate) -> Message:
        """Assign id and timestamp, append to the log and return the message."""
        pass

    @abstractmethod
    async def read_all(self, conversation_id: str) -> List[Message]:
        """Return the full log in append order, empty if unknown."""
        pass

    @abstractmethod
    async def count(self, conversation_id: str) -> int:
        """Return the length of the log."""
        pass

    @abstractmethod
    async def delete_conversation(self, conversation_id: str) -> None:
        """Remove every message of a conversation.

        Raises:
            ConversationNotFoundError: If the conversation has no log.
        """
        pass


class ConversationStateStore(ABC):
    """Raw persistence of conversation state records."""

    @abstractmethod
    async def get(self, conversation_id: str) -> Optional[ConversationState]:
        pass

    @abstractmethod
    async def put(self, state: ConversationState) -> None:
        """Insert or replace a state record, keeping its storage position."""
        pass

    @abstractmethod
    async def list_all(self) -> List[ConversationState]:
        """Return every state record in insertion order."""
        pass

    @abstractmethod
    async def remove(self, conversation_id: str) -> None:
        """Delete a state record.

        Raises:
            ConversationNotFoundError: If no record exists.
        """
        pass


class StorageBackend(ABC):
    """A message store and a state store that commit together."""

    name: str = "abstract"
    messages: MessageStore
    states: ConversationStateStore

    async def initialize(self) -> None:
        """Prepare the backend for use."""

    async def close(self) -> None:
        """Release backend resources."""

    @abstractmethod
    def transaction(self, conversation_id: str) -> AsyncContextManager[None]:
        """Run the enclosed mutations of one conversation as a single unit.

        Everything done inside the block is committed on normal exit and
        rolled back if the block raises.
        """
        pass

    @contextlib.asynccontextmanager
    async def reading(self) -> AsyncIterator[None]:
        """Run the enclosed reads against committed data only.

        Reads inside the block never observe a write transaction that is
        still in progress.
        """
        yield
