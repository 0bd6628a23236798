"""Range and limit queries over a conversation's log."""

from typing import List, Optional, Sequence

from ..domain.exceptions import InvalidHistoryOptionError
from ..domain.models import HistoryOptions, Message
from ..repositories.base import MessageStore


def validate_options(options: HistoryOptions) -> None:
    if options.limit is not None and options.limit <= 0:
        raise InvalidHistoryOptionError(f"limit must be a positive integer, got {options.limit}")


def apply_options(messages: Sequence[Message], options: HistoryOptions) -> List[Message]:
    """Filter by the exclusive ``before``/``after`` bounds, then keep the last ``limit``.

    Truncation happens after range filtering so ``limit`` always selects the
    most recent matches, in append order.
    """
    validate_options(options)
    filtered = list(messages)
    if options.before is not None:
        filtered = [m for m in filtered if m.timestamp < options.before]
    if options.after is not None:
        filtered = [m for m in filtered if m.timestamp > options.after]
    if options.limit is not None:
        filtered = filtered[-options.limit:]
    return filtered


class HistoryQueryEngine:
    """Read-only view of the message store."""

    def __init__(self, store: MessageStore) -> None:
        self._store = store

    async def query(self, conversation_id: str, options: Optional[HistoryOptions] = None) -> List[Message]:
        options = options or HistoryOptions()
        validate_options(options)
        messages = await self._store.read_all(conversation_id)
        return apply_options(messages, options)
