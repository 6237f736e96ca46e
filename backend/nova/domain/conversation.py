"""Conversation sessions and their messages."""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID, uuid4

from pydantic import Field

from nova.domain.base import DomainModel, utcnow

MAX_TITLE_LENGTH = 200
MAX_MESSAGE_LENGTH = 100_000
MAX_MODEL_LENGTH = 100

# Title generation
_TITLE_TARGET = 50
_TITLE_MIN_BREAK = 20


class MessageRole(str, PyEnum):
    """Role of a message author."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ConversationSession(DomainModel):
    """A learner's conversation with Nova."""

    id: UUID
    profile_id: UUID
    title: str | None = Field(default=None, max_length=MAX_TITLE_LENGTH)
    created_at: datetime
    last_message_at: datetime
    is_deleted: bool = False
    last_memory_extraction_at: datetime | None = None
    last_processed_message_id: UUID | None = None

    @classmethod
    def create(cls, profile_id: UUID, *, now: datetime | None = None) -> "ConversationSession":
        """Start a new, untitled session."""
        now = now or utcnow()
        return cls(id=uuid4(), profile_id=profile_id, created_at=now, last_message_at=now)

    def is_owned_by(self, profile_id: UUID) -> bool:
        return self.profile_id == profile_id

    def touch(self, at: datetime | None = None) -> "ConversationSession":
        return self.model_copy(update={"last_message_at": at or utcnow()})

    def with_title(self, title: str) -> "ConversationSession":
        title = title.strip()[:MAX_TITLE_LENGTH] or None
        return self.model_copy(update={"title": title})

    def soft_delete(self) -> "ConversationSession":
        return self.model_copy(update={"is_deleted": True})

    def mark_extracted(self, last_message_id: UUID, at: datetime | None = None) -> "ConversationSession":
        """Advance the consolidation watermark."""
        return self.model_copy(
            update={
                "last_processed_message_id": last_message_id,
                "last_memory_extraction_at": at or utcnow(),
            }
        )


class Message(DomainModel):
    """
    One immutable message in a session.

    ``seq`` is assigned by the store on insert and breaks ``created_at`` ties
    in insertion order; it is ``None`` until the message is persisted.
    """

    id: UUID
    session_id: UUID
    role: MessageRole
    content: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)
    created_at: datetime
    tokens_used: int | None = Field(default=None, ge=0)
    model_used: str | None = Field(default=None, max_length=MAX_MODEL_LENGTH)
    seq: int | None = None

    @classmethod
    def user(cls, session_id: UUID, content: str, *, now: datetime | None = None) -> "Message":
        return cls(
            id=uuid4(),
            session_id=session_id,
            role=MessageRole.USER,
            content=content,
            created_at=now or utcnow(),
        )

    @classmethod
    def assistant(
        cls,
        session_id: UUID,
        content: str,
        *,
        tokens_used: int | None = None,
        model_used: str | None = None,
        now: datetime | None = None,
    ) -> "Message":
        return cls(
            id=uuid4(),
            session_id=session_id,
            role=MessageRole.ASSISTANT,
            content=content,
            created_at=now or utcnow(),
            tokens_used=tokens_used,
            model_used=model_used[:MAX_MODEL_LENGTH] if model_used else None,
        )


class SessionSummary(DomainModel):
    """Session row plus its message count, for listings."""

    id: UUID
    title: str | None
    created_at: datetime
    last_message_at: datetime
    message_count: int


def generate_title(first_message: str) -> str:
    """
    Derive a session title from the first user message.

    Short messages are used as-is. Longer ones are cut at the last space
    before the 50th character (or hard-cut at 50 when that space comes before
    the 20th character) and suffixed with an ellipsis.
    """
    title = first_message.strip()
    if len(title) <= _TITLE_TARGET:
        return title

    break_point = title.rfind(" ", 0, _TITLE_TARGET + 1)
    if break_point < _TITLE_MIN_BREAK:
        break_point = _TITLE_TARGET

    return title[:break_point].rstrip() + "..."
