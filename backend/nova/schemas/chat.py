"""Pydantic schemas for chat operations."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from nova.domain.conversation import MAX_MESSAGE_LENGTH, MessageRole
from nova.schemas.base import BaseSchema, CreatedAtMixin, IDMixin


# Request schemas
class ChatStreamRequest(BaseSchema):
    """Request to send a chat message and stream the reply."""

    message: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
    session_id: UUID | None = None

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Message cannot be blank")
        return value


# Response schemas
class MessageResponse(BaseSchema, IDMixin, CreatedAtMixin):
    """Chat message response."""

    role: MessageRole
    content: str
    tokens_used: int | None = None
    model_used: str | None = None


class SessionSummaryResponse(BaseSchema, IDMixin, CreatedAtMixin):
    """Session in a listing."""

    title: str | None
    last_message_at: datetime
    message_count: int


class SessionListResponse(BaseSchema):
    """One page of sessions, most recent first."""

    sessions: list[SessionSummaryResponse]
    next_cursor: str | None = None
    has_more: bool = False


class SessionDetailResponse(BaseSchema, IDMixin, CreatedAtMixin):
    """Session with its full message history."""

    title: str | None
    last_message_at: datetime
    messages: list[MessageResponse]


class HealthResponse(BaseModel):
    status: str
    content_chunks: int
