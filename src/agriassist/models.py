"""Enums and REST records shared across the client.

The REST shapes mirror the AgriAssist API, which speaks camelCase JSON; the
pydantic models accept both the wire aliases and snake_case field names.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum, IntEnum
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class ConnectionState(str, Enum):
    """Lifecycle of a single chat socket."""

    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class CloseCode(IntEnum):
    """WebSocket close codes the session reacts to."""

    NORMAL = 1000
    GOING_AWAY = 1001
    ABNORMAL = 1006
    POLICY_VIOLATION = 1008
    INTERNAL_ERROR = 1011


# Closures that end the reconnect cycle.
TERMINAL_CLOSE_CODES: frozenset[int] = frozenset(
    {CloseCode.NORMAL.value, CloseCode.POLICY_VIOLATION.value}
)


class EventType(str, Enum):
    """Chat socket frame types."""

    CHAT_MESSAGE = "chat_message"
    AI_TOKEN = "ai_token"
    AI_COMPLETE = "ai_complete"
    ERROR = "error"


class Language(str, Enum):
    """Reply languages supported by the assistant."""

    ENGLISH = "en"
    HINDI = "hi"
    TAMIL = "ta"


def parse_language(value: str | Language | None, default: Language = Language.ENGLISH) -> Language:
    """Parse a language code, accepting any case. ``None`` returns ``default``."""
    if value is None:
        return default
    if isinstance(value, Language):
        return value
    return Language(value.strip().lower())


class Sender(str, Enum):
    USER = "USER"
    AI = "AI"
    SYSTEM = "SYSTEM"


class MessageType(str, Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    DOCUMENT = "DOCUMENT"
    VOICE = "VOICE"


class _ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class NamedRef(_ApiModel):
    name: str


class CropRef(_ApiModel):
    crop: NamedRef


class Conversation(_ApiModel):
    """A conversation record as listed in the chat sidebar."""

    id: str
    field_id: str | None = Field(default=None, alias="fieldId")
    crop_assignment_id: str | None = Field(default=None, alias="cropAssignmentId")
    status: str = "ACTIVE"
    started_at: datetime | None = Field(default=None, alias="startedAt")
    field: NamedRef | None = None
    crop_assignment: CropRef | None = Field(default=None, alias="cropAssignment")

    @property
    def title(self) -> str:
        """Display name; conversations carry no title of their own."""
        if self.crop_assignment is not None:
            return f"Chat about {self.crop_assignment.crop.name}"
        if self.field is not None:
            return f"Chat about {self.field.name}"
        if self.started_at is not None:
            return f"Chat from {self.started_at:%Y-%m-%d %H:%M}"
        return f"Chat {self.id[:8]}"


class ChatMessage(_ApiModel):
    """One persisted (or optimistic, locally created) chat message."""

    id: str
    conversation_id: str = Field(alias="conversationId")
    sender: Sender
    message_type: MessageType = Field(default=MessageType.TEXT, alias="messageType")
    text_content: str | None = Field(default=None, alias="textContent")
    file_path: str | None = Field(default=None, alias="filePath")
    created_at: datetime = Field(alias="createdAt")


class Pagination(_ApiModel):
    total: int = 0
    page: int = 1
    limit: int = 20
    total_pages: int = Field(default=0, alias="totalPages")


class Page(_ApiModel, Generic[T]):
    """Paginated REST response: ``{"data": [...], "pagination": {...}}``."""

    data: list[T] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)

    @property
    def has_more(self) -> bool:
        return self.pagination.page < self.pagination.total_pages
