"""Domain models for conversation history."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

STORE_ASSIGNED_FIELDS = ("id", "timestamp")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_json_native(value: Any) -> bool:
    """True for values that survive a JSON round trip with their exact type."""
    if value is None or type(value) in (bool, int, float, str):
        return True
    if type(value) is list:
        return all(is_json_native(item) for item in value)
    if type(value) is dict:
        return all(type(key) is str and is_json_native(item) for key, item in value.items())
    return False


def check_json_native(fields: Optional[Dict[str, Any]], what: str) -> None:
    for name, value in (fields or {}).items():
        if not is_json_native(value):
            raise ValueError(
                f"{what} {name!r} must be built from JSON types (str, int, float, bool, None, list, dict), "
                f"got {type(value).__name__}"
            )


class MessageStatus(str, Enum):
    """Delivery status of a message."""

    SENDING = "sending"
    SENT = "sent"
    ERROR = "error"


class MessageFields(BaseModel):
    """Fields a caller may set on a message. Unknown fields pass through."""

    model_config = ConfigDict(extra="allow")

    chat_id: str = Field(min_length=1)
    content: str = ""
    role: str = "user"  # "user", "assistant", "system" or "tool"
    status: MessageStatus = MessageStatus.SENT
    username: Optional[str] = None
    parent_id: Optional[str] = None

    @model_validator(mode="after")
    def check_extra_fields(self):
        check_json_native(self.model_extra, "extra field")
        return self


class MessageCreate(MessageFields):
    """Input for appending a message; id and timestamp are assigned by the store."""

    @model_validator(mode="before")
    @classmethod
    def reject_store_assigned(cls, data):
        if isinstance(data, dict):
            supplied = [name for name in STORE_ASSIGNED_FIELDS if name in data]
            if supplied:
                raise ValueError(f"fields assigned by the store cannot be supplied: {', '.join(supplied)}")
        return data


class Message(MessageFields):
    """Message as recorded in a conversation log."""

    id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=utc_now)

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)


class ConversationState(BaseModel):
    """Summary state derived from a conversation's message log."""

    id: str
    created_at: datetime
    updated_at: datetime
    message_count: int = 0
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("metadata")
    @classmethod
    def check_metadata(cls, value: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        check_json_native(value, "metadata key")
        return value


class ConversationSnapshot(BaseModel):
    """A conversation's state together with its full ordered log."""

    state: ConversationState
    messages: List[Message] = []


class HistoryOptions(BaseModel):
    """Range and limit options for history queries.

    ``before`` and ``after`` are exclusive bounds. ``limit`` keeps the most
    recent messages left after range filtering.
    """

    before: Optional[datetime] = None
    after: Optional[datetime] = None
    limit: Optional[int] = None

    @field_validator("before", "after")
    @classmethod
    def normalize_bound(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value) if value is not None else None
