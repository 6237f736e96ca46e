"""
Repository contracts.

Services depend on these protocols only. The SQLAlchemy implementations live
next to this module; tests provide in-memory ones. Writes are staged until the
owning unit of work commits.
"""

from datetime import datetime
from types import TracebackType
from typing import Protocol
from uuid import UUID

from nova.domain import (
    ContentChunk,
    ContentSource,
    ConversationSession,
    LearnerProfile,
    Memory,
    MemoryCategory,
    Message,
    SessionSummary,
)


class ConversationRepository(Protocol):
    async def find_session(self, session_id: UUID) -> ConversationSession | None: ...

    async def find_session_for_update(self, session_id: UUID) -> ConversationSession | None:
        """Load a session and hold a row lock until the transaction ends."""
        ...

    async def add_session(self, session: ConversationSession) -> None: ...

    async def update_session(self, session: ConversationSession) -> None: ...

    async def list_sessions(
        self,
        profile_id: UUID,
        *,
        limit: int,
        before: tuple[datetime, UUID] | None = None,
    ) -> list[SessionSummary]:
        """Non-deleted sessions ordered by (last_message_at, id) descending, strictly before the cursor."""
        ...

    async def sessions_needing_extraction(self, profile_id: UUID) -> list[ConversationSession]: ...

    async def add_message(self, message: Message) -> Message:
        """Insert a message and return it with its store-assigned ``seq``."""
        ...

    async def find_message(self, message_id: UUID) -> Message | None: ...

    async def list_messages(self, session_id: UUID, *, limit: int | None = None) -> list[Message]:
        """Messages in (created_at, seq) order; with ``limit``, only the most recent ones."""
        ...

    async def list_messages_after(self, session_id: UUID, after_message_id: UUID | None) -> list[Message]:
        """Messages strictly after the given one in (created_at, seq) order, or all when None."""
        ...


class MemoryRepository(Protocol):
    async def find(self, memory_id: UUID) -> Memory | None: ...

    async def list_active(
        self,
        profile_id: UUID,
        *,
        category: MemoryCategory | None = None,
        limit: int | None = 100,
    ) -> list[Memory]:
        """Active memories, newest first; all of them when ``limit`` is None."""
        ...

    async def list_recent(self, profile_id: UUID, count: int) -> list[Memory]: ...

    async def list_by_min_importance(self, profile_id: UUID, min_importance: int, limit: int) -> list[Memory]: ...

    async def list_with_embeddings(self, profile_id: UUID) -> list[Memory]: ...

    async def add(self, memory: Memory) -> None: ...

    async def update(self, memory: Memory) -> None: ...


class ContentRepository(Protocol):
    async def list_chunks(self) -> list[ContentChunk]: ...

    async def find_by_source_identifier(self, source: ContentSource, source_identifier: str) -> ContentChunk | None: ...


class LearnerProfileRepository(Protocol):
    async def find_by_profile_id(self, profile_id: UUID) -> LearnerProfile | None: ...


class UnitOfWork(Protocol):
    """One transaction spanning all repositories."""

    conversations: ConversationRepository
    memories: MemoryRepository
    content: ContentRepository
    learners: LearnerProfileRepository

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...

    async def __aenter__(self) -> "UnitOfWork": ...

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None: ...


class UnitOfWorkFactory(Protocol):
    def __call__(self) -> UnitOfWork: ...
