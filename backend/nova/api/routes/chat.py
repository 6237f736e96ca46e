"""API routes for chat sessions with streaming support."""

import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status
from sse_starlette.sse import EventSourceResponse

from nova.api.deps import CurrentProfile, Orchestrator, Uow
from nova.schemas.chat import (
    ChatStreamRequest,
    MessageResponse,
    SessionDetailResponse,
    SessionListResponse,
    SessionSummaryResponse,
)
from nova.schemas.events import encode_event
from nova.services import sessions

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


# =============================================================================
# CHAT STREAMING
# =============================================================================


@router.post("/chat/stream")
async def stream_chat_message(
    request: ChatStreamRequest,
    profile_id: CurrentProfile,
    orchestrator: Orchestrator,
):
    """
    Send a chat message and stream the response using Server-Sent Events (SSE).

    Each event is a single ``data:`` line of JSON with a ``type`` of
    ``start``, ``content``, ``done`` or ``error``. Omit ``sessionId`` to
    start a new session.
    """

    async def event_generator():
        """Generate SSE events for one chat turn."""
        async for event in orchestrator.stream_turn(profile_id, request.session_id, request.message):
            yield {"data": encode_event(event)}

    return EventSourceResponse(event_generator(), sep="\n")


# =============================================================================
# SESSIONS
# =============================================================================


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    profile_id: CurrentProfile,
    uow: Uow,
    limit: int = Query(default=sessions.DEFAULT_PAGE_SIZE, ge=1, le=sessions.MAX_PAGE_SIZE),
    cursor: str | None = None,
):
    """List the profile's sessions, most recent first. Pass ``nextCursor`` back as ``cursor`` for the next page."""
    try:
        page, next_cursor = await sessions.list_sessions(uow, profile_id, limit=limit, cursor=cursor)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid cursor")

    return SessionListResponse(
        sessions=[SessionSummaryResponse.model_validate(s) for s in page],
        next_cursor=next_cursor,
        has_more=next_cursor is not None,
    )


@router.get("/sessions/{session_id}", response_model=SessionDetailResponse)
async def get_session(
    session_id: UUID,
    profile_id: CurrentProfile,
    uow: Uow,
):
    """Get a session with its full message history in creation order."""
    session, messages = await sessions.get_session_history(uow, profile_id, session_id)
    return SessionDetailResponse(
        id=session.id,
        title=session.title,
        created_at=session.created_at,
        last_message_at=session.last_message_at,
        messages=[MessageResponse.model_validate(m) for m in messages],
    )


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: UUID,
    profile_id: CurrentProfile,
    uow: Uow,
):
    """Soft-delete a session."""
    await sessions.delete_session(uow, profile_id, session_id)
    return None
