"""
Memory consolidation.

Mines the unprocessed part of a session transcript for facts about the
learner and merges them into the memory store:

- single-slot categories keep one active memory; a different fact
  supersedes it, an equal one is a no-op
- multi-slot categories accumulate; a near-duplicate bumps the existing
  memory's occurrence count instead of adding a row

A pass is idempotent. The watermark (``last_processed_message_id``) only
moves in the same transaction as the memory writes, and a pass that finds
the watermark moved under it (another pass won) writes nothing.
"""

import asyncio
import logging
import weakref
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from nova.config import Settings, get_settings
from nova.domain import Memory, MemoryCandidate, Message, MessageRole, normalize_content, utcnow
from nova.errors import ExtractionError, NotFoundError
from nova.repositories.base import UnitOfWork
from nova.services.embeddings import Embedder, cosine_similarity
from nova.services.extraction import FactExtractor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsolidationResult:
    session_id: UUID
    messages_processed: int = 0
    memories_created: int = 0
    memories_reinforced: int = 0
    memories_superseded: int = 0
    skipped: bool = False


@dataclass(frozen=True)
class ProfileConsolidationResult:
    sessions_processed: int = 0
    sessions_failed: int = 0
    memories_created: int = 0


def unprocessed_slice(messages: Sequence[Message]) -> list[Message]:
    """Messages up to and including the last assistant message; empty if there is none."""
    for index in range(len(messages) - 1, -1, -1):
        if messages[index].role == MessageRole.ASSISTANT:
            return list(messages[: index + 1])
    return []


def find_near_duplicate(
    candidate: MemoryCandidate,
    embedding: Sequence[float] | None,
    active: Sequence[Memory],
    threshold: float,
) -> Memory | None:
    """
    Existing memory that ``candidate`` duplicates, if any.

    Equal normalized text wins; otherwise the most similar memory whose
    embedding cosine is >= ``threshold`` (ties by id). Both tests are
    symmetric and deterministic.
    """
    key = normalize_content(candidate.content)
    for memory in active:
        if normalize_content(memory.content) == key:
            return memory

    if embedding is None:
        return None

    best = None
    best_similarity = threshold
    for memory in sorted(active, key=lambda m: str(m.id)):
        if memory.embedding is None:
            continue
        similarity = cosine_similarity(embedding, memory.embedding)
        if similarity >= best_similarity and (best is None or similarity > best_similarity):
            best = memory
            best_similarity = similarity
    return best


class MemoryConsolidationEngine:
    """Runs consolidation passes, at most one at a time per session in this process."""

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        extractor: FactExtractor,
        embedder: Embedder,
        settings: Settings | None = None,
    ):
        self.uow_factory = uow_factory
        self.extractor = extractor
        self.embedder = embedder
        self.settings = settings or get_settings()
        self._locks: weakref.WeakValueDictionary[UUID, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, session_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def consolidate(self, session_id: UUID) -> ConsolidationResult:
        """
        Merge facts from the session's unprocessed messages into memory.

        Raises:
            NotFoundError: The session does not exist.
            ExtractionError: The pass failed; nothing was written and the
                watermark did not move.
        """
        lock = self._lock_for(session_id)
        async with lock:
            try:
                return await self._run(session_id)
            except (NotFoundError, ExtractionError):
                raise
            except Exception as e:
                logger.exception("Consolidation failed for session_id=%s", session_id)
                raise ExtractionError(f"Consolidation of session {session_id} failed") from e

    async def _run(self, session_id: UUID) -> ConsolidationResult:
        # Read phase; released before the slow model call
        async with self.uow_factory() as uow:
            session = await uow.conversations.find_session(session_id)
            if session is None:
                raise NotFoundError("Session", session_id)
            watermark = session.last_processed_message_id
            messages = unprocessed_slice(await uow.conversations.list_messages_after(session_id, watermark))

        if not messages:
            logger.debug("Nothing to consolidate for session_id=%s", session_id)
            return ConsolidationResult(session_id=session_id, skipped=True)

        candidates = await self.extractor.extract(messages)
        embeddings = [await self.embedder.embed(candidate.content) for candidate in candidates]

        # Write phase
        async with self.uow_factory() as uow:
            locked = await uow.conversations.find_session_for_update(session_id)
            if locked is None:
                raise NotFoundError("Session", session_id)
            if locked.last_processed_message_id != watermark:
                logger.info("Session %s was consolidated concurrently; discarding this pass", session_id)
                return ConsolidationResult(session_id=session_id, skipped=True)

            now = utcnow()
            created = reinforced = superseded = 0
            for candidate, embedding in zip(candidates, embeddings):
                outcome = await self._merge(uow, locked.profile_id, session_id, candidate, embedding, now)
                created += outcome[0]
                reinforced += outcome[1]
                superseded += outcome[2]

            await uow.conversations.update_session(locked.mark_extracted(messages[-1].id, now))
            await uow.commit()

        logger.info(
            "Consolidated session_id=%s: %d messages, %d created, %d reinforced, %d superseded",
            session_id, len(messages), created, reinforced, superseded,
        )
        return ConsolidationResult(
            session_id=session_id,
            messages_processed=len(messages),
            memories_created=created,
            memories_reinforced=reinforced,
            memories_superseded=superseded,
        )

    async def _merge(
        self,
        uow: UnitOfWork,
        profile_id: UUID,
        session_id: UUID,
        candidate: MemoryCandidate,
        embedding: list[float] | None,
        now: datetime,
    ) -> tuple[int, int, int]:
        """Apply one candidate. Returns (created, reinforced, superseded)."""
        active = await uow.memories.list_active(profile_id, category=candidate.category, limit=None)

        if candidate.category.is_single_slot:
            key = normalize_content(candidate.content)
            if active and normalize_content(active[0].content) == key:
                return 0, 0, 0

            # Replacement must not predate what it replaces
            created_at = max([now, *(m.created_at for m in active)])
            replacement = Memory.create(profile_id, session_id, candidate, embedding=embedding, now=created_at)
            await uow.memories.add(replacement)
            for old in active:
                await uow.memories.update(old.supersede(replacement, at=now))
            return 1, 0, len(active)

        duplicate = find_near_duplicate(candidate, embedding, active, self.settings.memory_duplicate_threshold)
        if duplicate is not None:
            await uow.memories.update(duplicate.reinforce(candidate.importance))
            return 0, 1, 0

        await uow.memories.add(Memory.create(profile_id, session_id, candidate, embedding=embedding, now=now))
        return 1, 0, 0

    async def consolidate_profile(self, profile_id: UUID) -> ProfileConsolidationResult:
        """Consolidate every session of the profile with messages newer than its last pass."""
        async with self.uow_factory() as uow:
            sessions = await uow.conversations.sessions_needing_extraction(profile_id)

        processed = failed = created = 0
        for session in sessions:
            try:
                result = await self.consolidate(session.id)
            except (ExtractionError, NotFoundError) as e:
                logger.warning("Skipping session_id=%s during profile consolidation: %s", session.id, e)
                failed += 1
                continue
            if not result.skipped:
                processed += 1
                created += result.memories_created

        return ProfileConsolidationResult(
            sessions_processed=processed,
            sessions_failed=failed,
            memories_created=created,
        )


class ConsolidationWorker:
    """
    Background consumer of session ids queued after successful chat turns.

    ``enqueue`` never blocks and never raises; failures are logged and left
    for the next trigger to retry.
    """

    def __init__(self, engine: MemoryConsolidationEngine, *, maxsize: int = 1000):
        self.engine = engine
        self._queue: asyncio.Queue[UUID] = asyncio.Queue(maxsize=maxsize)
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="memory-consolidation")
        logger.info("Memory consolidation worker started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Memory consolidation worker stopped")

    def enqueue(self, session_id: UUID) -> bool:
        try:
            self._queue.put_nowait(session_id)
        except asyncio.QueueFull:
            logger.warning("Consolidation queue full; dropping session_id=%s", session_id)
            return False
        return True

    async def join(self) -> None:
        """Wait until every queued session has been handled."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            session_id = await self._queue.get()
            try:
                await self.engine.consolidate(session_id)
            except (ExtractionError, NotFoundError) as e:
                logger.warning("Consolidation for session_id=%s failed: %s", session_id, e)
            except Exception:
                logger.exception("Unexpected consolidation error for session_id=%s", session_id)
            finally:
                self._queue.task_done()
