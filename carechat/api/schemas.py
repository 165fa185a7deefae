"""Pydantic models for the chat data model and the API wire envelopes.

Shared by the client (parsing responses) and the reference server
(declaring its request/response schemas), so both sides agree on one
contract. Field names are snake_case in Python and camelCase on the wire.
"""

import time
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def new_message_id() -> str:
    """Timestamp-derived client id: epoch millis plus a short random suffix."""
    return f"{int(time.time() * 1000)}-{uuid4().hex[:8]}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """Base model accepting both field names and camelCase aliases."""
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict:
        """Serialize with wire aliases, dropping unset optional fields."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class Sender(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


# Senders seen from the different endpoints, normalized to two values
_SENDER_ALIASES = {
    "user": Sender.USER,
    "me": Sender.USER,
    "assistant": Sender.ASSISTANT,
    "ai": Sender.ASSISTANT,
    "other": Sender.ASSISTANT,
}


class MessageKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"


class MessageMetadata(WireModel):
    """Display-only details attached to assistant replies."""
    confidence: float | None = None
    ai_model: str | None = Field(default=None, alias="aiModel")


class Message(WireModel):
    """Single entry in a conversation log.

    Attributes:
        id: Unique within one log. Client-generated for optimistic entries,
            re-derived at receipt when the server omits it.
        sender: Who authored the message.
        content: Text payload; assistant content may contain markdown.
        timestamp: Authorship time (client clock for user messages).
        kind: "text" or "image"; only text is exercised.
        metadata: Optional confidence / model info.
    """
    id: str = Field(default_factory=new_message_id, validation_alias=AliasChoices("id", "_id"))
    sender: Sender
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    kind: MessageKind = Field(default=MessageKind.TEXT, alias="type")
    metadata: MessageMetadata | None = None

    @field_validator("sender", mode="before")
    @classmethod
    def _normalize_sender(cls, value):
        if isinstance(value, Sender):
            return value
        try:
            return _SENDER_ALIASES[str(value).strip().lower()]
        except KeyError:
            raise ValueError(f"unknown sender: {value!r}")

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def is_user(self) -> bool:
        return self.sender is Sender.USER


class SessionPayload(WireModel):
    """Session as returned by POST /chat/session."""
    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    title: str = ""
    messages: list[Message] = Field(default_factory=list)
    last_activity: datetime | None = Field(default=None, alias="lastActivity")
    is_active: bool = Field(default=True, alias="isActive")

    @field_validator("last_activity")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class HistoryEntry(WireModel):
    """Previously created conversation surfaced in the history list.

    The message list is only used to derive a preview and a count.
    """
    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    title: str = ""
    last_activity: datetime = Field(alias="lastActivity")
    is_active: bool = Field(default=False, alias="isActive")
    messages: list[Message] = Field(default_factory=list)

    @field_validator("last_activity")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Pagination(WireModel):
    """History cursor. has_more is the authoritative continuation flag."""
    total: int = Field(default=0, ge=0)
    limit: int = Field(default=10, ge=1)
    offset: int = Field(default=0, ge=0)
    has_more: bool = Field(default=False, alias="hasMore")

    @property
    def next_offset(self) -> int:
        return self.offset + self.limit


class HistoryPage(WireModel):
    """Response of GET /chat/history."""
    chat_sessions: list[HistoryEntry] = Field(default_factory=list, alias="chatSessions")
    pagination: Pagination = Field(default_factory=Pagination)


# Request / response envelopes

class CreateSessionRequest(WireModel):
    title: str = Field(..., min_length=1, max_length=200)


class CreateSessionResponse(WireModel):
    chat_session: SessionPayload = Field(alias="chatSession")


class SendMessageRequest(WireModel):
    """Outgoing chat message.

    client_message_id doubles as an idempotency key: a repeated id must not
    produce a second assistant reply.
    """
    session_id: str = Field(..., min_length=1, alias="sessionId")
    message: str = Field(..., min_length=1)
    type: MessageKind = MessageKind.TEXT
    client_message_id: str | None = Field(default=None, alias="clientMessageId")


class AssistantReply(WireModel):
    """The aiMessage part of a POST /chat/message response."""
    id: str | None = Field(default=None, validation_alias=AliasChoices("id", "_id"))
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: MessageMetadata | None = None

    def to_message(self) -> Message:
        """Build the assistant log entry, deriving an id if the server sent none."""
        return Message(
            id=self.id or new_message_id(),
            sender=Sender.ASSISTANT,
            content=self.content,
            timestamp=self.timestamp,
            metadata=self.metadata,
        )


class SendMessageResponse(WireModel):
    ai_message: AssistantReply = Field(alias="aiMessage")


class ConsultRequest(WireModel):
    """Body of POST /doctors/ai-chat."""
    message: str = Field(..., min_length=1)


class ConsultResponse(WireModel):
    response: str
