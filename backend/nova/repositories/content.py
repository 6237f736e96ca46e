"""SQLAlchemy repository for knowledge-base chunks (read-only)."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from nova.db.models import ContentChunk as ChunkRow
from nova.domain import ContentChunk, ContentSource


def _to_domain(row: ChunkRow) -> ContentChunk:
    return ContentChunk(
        id=row.id,
        source=ContentSource(row.source),
        source_identifier=row.source_identifier,
        title=row.title,
        content=row.content,
        embedding=tuple(row.embedding),
        token_count=row.token_count,
        author=row.author,
        technology=row.technology,
        parent_document_id=row.parent_document_id,
        section_path=row.section_path,
        chunk_index=row.chunk_index,
        start_time=row.start_time,
        end_time=row.end_time,
        published_at=row.published_at,
        source_url=row.source_url,
    )


class SqlContentRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_chunks(self) -> list[ContentChunk]:
        result = await self.db.execute(select(ChunkRow).order_by(ChunkRow.id))
        return [_to_domain(row) for row in result.scalars()]

    async def find_by_source_identifier(self, source: ContentSource, source_identifier: str) -> ContentChunk | None:
        stmt = select(ChunkRow).where(
            ChunkRow.source == source.value,
            ChunkRow.source_identifier == source_identifier,
        )
        result = await self.db.execute(stmt)
        row = result.scalar_one_or_none()
        return _to_domain(row) if row else None
