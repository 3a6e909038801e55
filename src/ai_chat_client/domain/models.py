"""Domain models for the chat client."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

DEFAULT_TITLE = "New Conversation"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _opaque_id(value: Any) -> Any:
    # The backend issues numeric ids; the client treats every id as an opaque string.
    if value is None or value == "":
        return None
    return str(value)


class SessionStatus(str, Enum):
    """Authentication status of the client session."""

    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"


class MessageRole(str, Enum):
    """Author of a message."""

    USER = "user"
    ASSISTANT = "assistant"


class Provenance(str, Enum):
    """Where a message in the timeline came from."""

    OPTIMISTIC = "optimistic"  # client-authored, not yet reconciled
    CONFIRMED = "confirmed"  # read back from server history


class EngineState(str, Enum):
    """States of the chat session engine for the active conversation."""

    EMPTY = "empty"
    LOADING = "loading"
    READY = "ready"
    SENDING = "sending"
    RECONCILING = "reconciling"


class Identity(BaseModel):
    """Authenticated user identity, as persisted on the client."""

    id: str
    username: str
    email: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        return _opaque_id(value)


class Session(BaseModel):
    """Client session model."""

    identity: Optional[Identity] = None
    status: SessionStatus = SessionStatus.ANONYMOUS

    @property
    def authenticated(self) -> bool:
        return self.status == SessionStatus.AUTHENTICATED and self.identity is not None


class UserSummary(BaseModel):
    """User summary returned by the auth endpoints."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    user_id: Optional[str] = Field(default=None, alias="userId")
    username: str
    email: Optional[str] = None
    message: Optional[str] = None

    @field_validator("user_id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        return _opaque_id(value)

    def to_identity(self) -> Identity:
        return Identity(id=self.user_id or self.username, username=self.username, email=self.email)


class Conversation(BaseModel):
    """Conversation model.

    ``id is None`` marks a conversation that exists only as a UI intent; it
    becomes durable once the backend assigns an id.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: Optional[str] = None
    title: str = DEFAULT_TITLE
    created_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("createdAt", "created_at")
    )

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        return _opaque_id(value)

    @field_validator("title", mode="before")
    @classmethod
    def default_title(cls, value: Any) -> Any:
        return value or DEFAULT_TITLE

    @property
    def durable(self) -> bool:
        return self.id is not None


class Message(BaseModel):
    """Message model.

    ``timestamp is None`` means the message is still pending reconciliation.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    role: MessageRole
    content: str
    timestamp: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("createdAt", "timestamp", "created_at")
    )
    provenance: Provenance = Provenance.CONFIRMED

    @classmethod
    def optimistic(
        cls, role: MessageRole, content: str, timestamp: Optional[datetime] = None
    ) -> "Message":
        return cls(role=role, content=content, timestamp=timestamp, provenance=Provenance.OPTIMISTIC)

    @property
    def pending(self) -> bool:
        return self.timestamp is None

    @property
    def confirmed(self) -> bool:
        return self.provenance == Provenance.CONFIRMED


class ChatReply(BaseModel):
    """Reply of the backend to a chat message."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: str = "error"
    response: Optional[str] = None
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    error: Optional[str] = None

    @field_validator("conversation_id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        return _opaque_id(value)

    @property
    def succeeded(self) -> bool:
        return self.status == "success" and bool(self.response)
