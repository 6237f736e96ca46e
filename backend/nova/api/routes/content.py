"""API routes for the knowledge-base content cache."""

import logging

from fastapi import APIRouter, HTTPException, status

from nova.api.deps import ContentCache, CurrentProfile
from nova.config import sanitize_error
from nova.schemas.content import ContentRefreshResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/content", tags=["content"])


@router.post("/refresh", response_model=ContentRefreshResponse)
async def refresh_content(
    profile_id: CurrentProfile,
    cache: ContentCache,
):
    """Reload content chunks so newly ingested ones become searchable."""
    try:
        count = await cache.refresh()
    except Exception as e:
        logger.exception("Content cache refresh requested by profile_id=%s failed", profile_id)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=sanitize_error(e, generic_message="Failed to reload content. Please try again later."),
        )
    logger.info("Content cache refreshed with %d chunks", count)
    return ContentRefreshResponse(content_chunks=count)
