"""Pre-embedded knowledge-base content."""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID

from pydantic import Field

from nova.domain.base import DomainModel

MAX_SOURCE_IDENTIFIER_LENGTH = 1000
MAX_CHUNK_TITLE_LENGTH = 500
MAX_CHUNK_CONTENT_LENGTH = 8000
MAX_AUTHOR_LENGTH = 200
MAX_TECHNOLOGY_LENGTH = 50
MAX_PARENT_DOCUMENT_ID_LENGTH = 500
MAX_SECTION_PATH_LENGTH = 500


class ContentSource(str, PyEnum):
    """Where a chunk came from."""

    OFFICIAL_DOCS = "official_docs"
    BOOK = "book"
    YOUTUBE = "youtube"
    ARTICLE = "article"
    PULSE = "pulse"

    @property
    def label(self) -> str:
        return _SOURCE_LABELS[self]


_SOURCE_LABELS = {
    ContentSource.OFFICIAL_DOCS: "Docs",
    ContentSource.BOOK: "Book",
    ContentSource.YOUTUBE: "YouTube",
    ContentSource.ARTICLE: "Article",
    ContentSource.PULSE: "Community",
}


class ContentChunk(DomainModel):
    """One retrievable unit of source material. Created by ingestion, read-only here."""

    id: UUID
    source: ContentSource
    source_identifier: str = Field(min_length=1, max_length=MAX_SOURCE_IDENTIFIER_LENGTH)
    title: str = Field(min_length=1, max_length=MAX_CHUNK_TITLE_LENGTH)
    content: str = Field(min_length=1, max_length=MAX_CHUNK_CONTENT_LENGTH)
    embedding: tuple[float, ...]
    token_count: int = Field(ge=0)
    author: str | None = Field(default=None, max_length=MAX_AUTHOR_LENGTH)
    technology: str | None = Field(default=None, max_length=MAX_TECHNOLOGY_LENGTH)
    parent_document_id: str | None = Field(default=None, max_length=MAX_PARENT_DOCUMENT_ID_LENGTH)
    section_path: str | None = Field(default=None, max_length=MAX_SECTION_PATH_LENGTH)
    chunk_index: int | None = None
    start_time: float | None = None
    end_time: float | None = None
    published_at: datetime | None = None
    source_url: str | None = None


class ContentSearchResult(DomainModel):
    """A chunk that matched a query, with its similarity score."""

    chunk_id: UUID
    source: ContentSource
    source_url: str | None = None
    title: str
    content: str
    author: str | None = None
    technology: str | None = None
    similarity: float
