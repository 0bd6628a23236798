"""Exceptions raised by the chat history core."""


class ChatHistoryError(Exception):
    """Base class for chat history errors."""


class ConversationNotFoundError(ChatHistoryError, LookupError):
    """Raised when a conversation has no log or state record."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation not found: {conversation_id!r}")
        self.conversation_id = conversation_id


class InvalidHistoryOptionError(ChatHistoryError, ValueError):
    """Raised when query options are out of range."""


class ConsistencyFaultError(ChatHistoryError):
    """Raised when the message log and conversation state disagree.

    The mutation that detected the fault is rolled back before this
    propagates; it is never retried.
    """

    def __init__(self, conversation_id: str, detail: str) -> None:
        super().__init__(f"Consistency fault in conversation {conversation_id!r}: {detail}")
        self.conversation_id = conversation_id
        self.detail = detail
