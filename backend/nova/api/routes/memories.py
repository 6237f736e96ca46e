"""API routes for learner memories and consolidation."""

import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from nova.api.deps import ConsolidationEngine, CurrentProfile, Uow
from nova.config import sanitize_error
from nova.domain import MemoryCategory
from nova.errors import ExtractionError
from nova.schemas.memory import (
    ConsolidationResponse,
    MemoryListResponse,
    MemoryResponse,
    ProfileConsolidationResponse,
)
from nova.services import sessions

logger = logging.getLogger(__name__)

router = APIRouter(tags=["memories"])


@router.get("/memories", response_model=MemoryListResponse)
async def list_memories(
    profile_id: CurrentProfile,
    uow: Uow,
    category: MemoryCategory | None = None,
):
    """List the profile's active memories, newest first."""
    memories = await uow.memories.list_active(profile_id, category=category)
    return MemoryListResponse(memories=[MemoryResponse.model_validate(m) for m in memories])


@router.post("/sessions/{session_id}/consolidate", response_model=ConsolidationResponse)
async def consolidate_session(
    session_id: UUID,
    profile_id: CurrentProfile,
    uow: Uow,
    engine: ConsolidationEngine,
):
    """Run a consolidation pass for one session now."""
    await sessions.get_owned_session(uow, profile_id, session_id)
    # Release the request transaction; the engine opens its own
    await uow.rollback()

    try:
        result = await engine.consolidate(session_id)
    except ExtractionError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=sanitize_error(e, generic_message="Memory extraction failed. Please try again later."),
        )
    return ConsolidationResponse.model_validate(result)


@router.post("/memories/extract", response_model=ProfileConsolidationResponse)
async def extract_memories(
    profile_id: CurrentProfile,
    engine: ConsolidationEngine,
):
    """Consolidate every session of the profile that has unprocessed messages."""
    result = await engine.consolidate_profile(profile_id)
    return ProfileConsolidationResponse.model_validate(result)
