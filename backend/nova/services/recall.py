"""Choose which active memories go into a prompt."""

import logging
from collections.abc import Sequence
from uuid import UUID

from nova.config import Settings, get_settings
from nova.domain import Memory
from nova.repositories.base import MemoryRepository
from nova.services.embeddings import Embedder, cosine_similarity, embed_within

logger = logging.getLogger(__name__)

RECENT_MEMORIES_COUNT = 5
HIGH_IMPORTANCE_THRESHOLD = 4
HIGH_IMPORTANCE_LIMIT = 5
SEMANTIC_SEARCH_LIMIT = 10
MAX_TOTAL_MEMORIES = 20


class MemoryRecall:
    """
    Blends three views of a learner's active memories.

    Semantically similar memories rank first (score = similarity + 1), then
    high-importance ones (importance / 5), then recent ones (decaying by
    position, at most 0.5). Each memory appears once, under its best view.
    Without a query embedding only the last two views are used.
    """

    def __init__(self, embedder: Embedder, settings: Settings | None = None):
        self.embedder = embedder
        self.settings = settings or get_settings()

    async def embed_query(self, message: str) -> list[float] | None:
        """Embed a user message within the retrieval time budget; None on timeout or failure."""
        return await embed_within(self.embedder, message, self.settings.retrieval_timeout_seconds)

    async def recall(
        self,
        memories: MemoryRepository,
        profile_id: UUID,
        query_embedding: Sequence[float] | None,
    ) -> list[Memory]:
        recent = await memories.list_recent(profile_id, RECENT_MEMORIES_COUNT)
        important = await memories.list_by_min_importance(
            profile_id, HIGH_IMPORTANCE_THRESHOLD, HIGH_IMPORTANCE_LIMIT
        )
        similar = await self._similar(memories, profile_id, query_embedding)

        scored: dict[UUID, tuple[float, Memory]] = {}

        def offer(memory: Memory, score: float) -> None:
            if not memory.is_active or memory.id in scored:
                return
            scored[memory.id] = (score, memory)

        for memory, similarity in similar:
            offer(memory, similarity + 1.0)
        for memory in sorted(important, key=lambda m: -m.importance):
            offer(memory, memory.importance / 5.0)
        for position, memory in enumerate(recent):
            offer(memory, (len(recent) - position) / len(recent) * 0.5)

        ranked = sorted(scored.values(), key=lambda item: (-item[0], str(item[1].id)))
        return [memory for _, memory in ranked[:MAX_TOTAL_MEMORIES]]

    async def _similar(
        self,
        memories: MemoryRepository,
        profile_id: UUID,
        query_embedding: Sequence[float] | None,
    ) -> list[tuple[Memory, float]]:
        if query_embedding is None:
            return []
        candidates = await memories.list_with_embeddings(profile_id)

        floor = self.settings.memory_recall_min_similarity
        matches = []
        for memory in candidates:
            if memory.embedding is None:
                continue
            similarity = cosine_similarity(query_embedding, memory.embedding)
            if similarity >= floor:
                matches.append((memory, similarity))

        matches.sort(key=lambda match: (-match[1], str(match[0].id)))
        return matches[:SEMANTIC_SEARCH_LIMIT]
