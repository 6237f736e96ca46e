"""Pydantic schemas for learner memories and consolidation."""

from uuid import UUID

from nova.domain import MemoryCategory
from nova.schemas.base import BaseSchema, CreatedAtMixin, IDMixin


class MemoryResponse(BaseSchema, IDMixin, CreatedAtMixin):
    """Active memory."""

    category: MemoryCategory
    content: str
    importance: int
    occurrence_count: int
    source_session_id: UUID


class MemoryListResponse(BaseSchema):
    memories: list[MemoryResponse]


class ConsolidationResponse(BaseSchema):
    """Outcome of one consolidation pass."""

    session_id: UUID
    messages_processed: int
    memories_created: int
    memories_reinforced: int
    memories_superseded: int
    skipped: bool


class ProfileConsolidationResponse(BaseSchema):
    sessions_processed: int
    sessions_failed: int
    memories_created: int
