"""Pydantic schemas for the knowledge-base content cache."""

from nova.schemas.base import BaseSchema


class ContentRefreshResponse(BaseSchema):
    """Chunk count after reloading the content cache."""

    content_chunks: int
