"""Session listing, history and soft delete, scoped to the owning profile."""

import logging
from datetime import datetime
from uuid import UUID

from nova.domain import ConversationSession, Message, SessionSummary
from nova.errors import AccessDeniedError, NotFoundError
from nova.repositories.base import UnitOfWork

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def encode_cursor(summary: SessionSummary) -> str:
    return f"{summary.last_message_at.isoformat()}|{summary.id}"


def decode_cursor(cursor: str) -> tuple[datetime, UUID]:
    """
    Parse a ``<lastMessageAt>|<id>`` cursor.

    Raises:
        ValueError: The cursor is malformed.
    """
    timestamp, separator, session_id = cursor.rpartition("|")
    if not separator:
        raise ValueError("Cursor must look like '<lastMessageAt>|<id>'")
    return datetime.fromisoformat(timestamp), UUID(session_id)


async def list_sessions(
    uow: UnitOfWork,
    profile_id: UUID,
    *,
    limit: int = DEFAULT_PAGE_SIZE,
    cursor: str | None = None,
) -> tuple[list[SessionSummary], str | None]:
    """One page of sessions, most recent first, and the cursor for the next page (None on the last)."""
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    before = decode_cursor(cursor) if cursor else None

    # Fetch one extra row to know whether another page exists
    rows = await uow.conversations.list_sessions(profile_id, limit=limit + 1, before=before)
    page = rows[:limit]
    next_cursor = encode_cursor(page[-1]) if len(rows) > limit else None
    return page, next_cursor


async def get_owned_session(uow: UnitOfWork, profile_id: UUID, session_id: UUID) -> ConversationSession:
    """
    Raises:
        NotFoundError: Missing or soft-deleted.
        AccessDeniedError: Owned by another profile.
    """
    session = await uow.conversations.find_session(session_id)
    if session is None or session.is_deleted:
        raise NotFoundError("Session", session_id)
    if not session.is_owned_by(profile_id):
        raise AccessDeniedError("Session", session_id, profile_id)
    return session


async def get_session_history(
    uow: UnitOfWork, profile_id: UUID, session_id: UUID
) -> tuple[ConversationSession, list[Message]]:
    session = await get_owned_session(uow, profile_id, session_id)
    messages = await uow.conversations.list_messages(session_id)
    return session, messages


async def delete_session(uow: UnitOfWork, profile_id: UUID, session_id: UUID) -> None:
    """Soft-delete; memories keep referencing the session."""
    session = await get_owned_session(uow, profile_id, session_id)
    await uow.conversations.update_session(session.soft_delete())
    await uow.commit()
    logger.info("Soft-deleted session_id=%s for profile_id=%s", session_id, profile_id)
