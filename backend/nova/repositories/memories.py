"""SQLAlchemy repository for learner memories."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from nova.db.models import Memory as MemoryRow
from nova.domain import Memory, MemoryCategory


def _to_domain(row: MemoryRow) -> Memory:
    return Memory(
        id=row.id,
        profile_id=row.profile_id,
        source_session_id=row.source_session_id,
        category=MemoryCategory(row.category),
        content=row.content,
        embedding=tuple(row.embedding) if row.embedding is not None else None,
        importance=row.importance,
        occurrence_count=row.occurrence_count,
        created_at=row.created_at,
        superseded_at=row.superseded_at,
        superseded_by_id=row.superseded_by_id,
    )


def _write(row: MemoryRow, memory: Memory) -> None:
    row.profile_id = memory.profile_id
    row.source_session_id = memory.source_session_id
    row.category = memory.category.value
    row.content = memory.content
    row.embedding = list(memory.embedding) if memory.embedding is not None else None
    row.importance = memory.importance
    row.occurrence_count = memory.occurrence_count
    row.created_at = memory.created_at
    row.superseded_at = memory.superseded_at
    row.superseded_by_id = memory.superseded_by_id


class SqlMemoryRepository:
    """Memory store backed by the nova_memories table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _active(self, profile_id: UUID):
        return select(MemoryRow).where(
            MemoryRow.profile_id == profile_id,
            MemoryRow.superseded_at.is_(None),
        )

    async def find(self, memory_id: UUID) -> Memory | None:
        row = await self.db.get(MemoryRow, memory_id)
        return _to_domain(row) if row else None

    async def list_active(
        self,
        profile_id: UUID,
        *,
        category: MemoryCategory | None = None,
        limit: int | None = 100,
    ) -> list[Memory]:
        stmt = self._active(profile_id)
        if category is not None:
            stmt = stmt.where(MemoryRow.category == category.value)
        stmt = stmt.order_by(MemoryRow.created_at.desc(), MemoryRow.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.db.execute(stmt)
        return [_to_domain(row) for row in result.scalars()]

    async def list_recent(self, profile_id: UUID, count: int) -> list[Memory]:
        return await self.list_active(profile_id, limit=count)

    async def list_by_min_importance(self, profile_id: UUID, min_importance: int, limit: int) -> list[Memory]:
        stmt = (
            self._active(profile_id)
            .where(MemoryRow.importance >= min_importance)
            .order_by(MemoryRow.importance.desc(), MemoryRow.created_at.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return [_to_domain(row) for row in result.scalars()]

    async def list_with_embeddings(self, profile_id: UUID) -> list[Memory]:
        stmt = self._active(profile_id).where(MemoryRow.embedding.is_not(None))
        result = await self.db.execute(stmt)
        return [_to_domain(row) for row in result.scalars()]

    async def add(self, memory: Memory) -> None:
        row = MemoryRow(id=memory.id)
        _write(row, memory)
        self.db.add(row)
        await self.db.flush()

    async def update(self, memory: Memory) -> None:
        row = await self.db.get(MemoryRow, memory.id)
        if row is None:
            raise LookupError(f"Memory {memory.id} does not exist")
        _write(row, memory)
        await self.db.flush()
