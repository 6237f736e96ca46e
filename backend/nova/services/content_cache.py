"""In-memory embedding matrix over the knowledge-base chunks."""

import asyncio
import logging
from collections.abc import Callable, Iterable

import numpy as np

from nova.domain import ContentChunk, ContentSource
from nova.repositories.base import UnitOfWork

logger = logging.getLogger(__name__)


class ContentEmbeddingCache:
    """
    Holds every chunk and a row-normalized embedding matrix for vector search.

    Loaded lazily on first use (or eagerly at app startup) and swapped
    atomically on ``refresh``. Chunks whose embedding dimension differs from
    the first chunk's are skipped.
    """

    def __init__(self, uow_factory: Callable[[], UnitOfWork] | None = None):
        self._uow_factory = uow_factory
        self._chunks: list[ContentChunk] = []
        self._matrix = np.zeros((0, 0), dtype=np.float32)
        self._loaded = False
        self._lock = asyncio.Lock()

    @classmethod
    def from_chunks(cls, chunks: Iterable[ContentChunk]) -> "ContentEmbeddingCache":
        cache = cls()
        cache._build(list(chunks))
        return cache

    @property
    def size(self) -> int:
        return len(self._chunks)

    async def ensure_loaded(self) -> None:
        if self._loaded:
            return
        async with self._lock:
            if not self._loaded:
                await self._load()

    async def refresh(self) -> int:
        """Reload all chunks from the content store. Returns the chunk count."""
        async with self._lock:
            await self._load()
        return self.size

    async def _load(self) -> None:
        if self._uow_factory is None:
            raise RuntimeError("ContentEmbeddingCache has no content store to load from")
        async with self._uow_factory() as uow:
            chunks = await uow.content.list_chunks()
        self._build(chunks)
        logger.info("Loaded %d content chunks into the embedding cache", self.size)

    def _build(self, chunks: list[ContentChunk]) -> None:
        usable = []
        dimension = None
        for chunk in chunks:
            if not chunk.embedding:
                continue
            if dimension is None:
                dimension = len(chunk.embedding)
            if len(chunk.embedding) != dimension:
                logger.warning("Skipping chunk %s: embedding dimension %d != %d", chunk.id, len(chunk.embedding), dimension)
                continue
            usable.append(chunk)

        if not usable:
            matrix = np.zeros((0, 0), dtype=np.float32)
        else:
            matrix = np.asarray([chunk.embedding for chunk in usable], dtype=np.float32)
            norms = np.linalg.norm(matrix, axis=1, keepdims=True)
            norms[norms == 0] = 1.0
            matrix = matrix / norms

        self._chunks = usable
        self._matrix = matrix
        self._loaded = True

    def rank(
        self,
        query_embedding: list[float],
        *,
        source: ContentSource | None = None,
        technology: str | None = None,
        author: str | None = None,
        min_similarity: float = 0.7,
        limit: int = 5,
    ) -> list[tuple[ContentChunk, float]]:
        """
        Chunks matching the filters with cosine similarity >= ``min_similarity``.

        Ordered by similarity descending, ties by chunk id, at most ``limit``.
        """
        if limit <= 0 or not self._chunks:
            return []

        query = np.asarray(query_embedding, dtype=np.float32)
        if query.shape != (self._matrix.shape[1],):
            logger.warning("Query embedding dimension %s does not match cache dimension %d", query.shape, self._matrix.shape[1])
            return []
        query_norm = float(np.linalg.norm(query))
        if query_norm == 0.0:
            return []

        similarities = np.clip(self._matrix @ (query / query_norm), -1.0, 1.0)
        technology_key = technology.lower() if technology else None

        matches = []
        for index in np.flatnonzero(similarities >= min_similarity):
            chunk = self._chunks[index]
            if source is not None and chunk.source != source:
                continue
            if technology_key is not None and (chunk.technology or "").lower() != technology_key:
                continue
            if author is not None and chunk.author != author:
                continue
            similarity = float(similarities[index])
            if similarity < min_similarity:
                continue
            matches.append((chunk, similarity))

        matches.sort(key=lambda match: (-match[1], str(match[0].id)))
        return matches[:limit]


class ContentCacheRefresher:
    """
    Periodically reloads the content cache so chunks ingested by the
    external pipeline become searchable without a restart.
    """

    def __init__(self, cache: ContentEmbeddingCache, interval_seconds: float):
        self.cache = cache
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running or self.interval_seconds <= 0:
            return
        self._task = asyncio.create_task(self._run(), name="content-cache-refresh")
        logger.info("Content cache refresh every %.0fs started", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Content cache refresh stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.cache.refresh()
            except Exception:
                # Keep serving the previous snapshot
                logger.exception("Periodic content cache refresh failed")
