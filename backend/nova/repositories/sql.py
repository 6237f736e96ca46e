"""Unit of work over one SQLAlchemy AsyncSession."""

from types import TracebackType

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nova.repositories.content import SqlContentRepository
from nova.repositories.conversations import SqlConversationRepository
from nova.repositories.learners import SqlLearnerProfileRepository
from nova.repositories.memories import SqlMemoryRepository


class SqlUnitOfWork:
    """
    Opens a session on enter and closes it on exit.

    Nothing is committed implicitly: callers commit explicitly, and anything
    left uncommitted (including on error) is rolled back on exit.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._db: AsyncSession | None = None

    async def __aenter__(self) -> "SqlUnitOfWork":
        self._db = self._session_factory()
        self.conversations = SqlConversationRepository(self._db)
        self.memories = SqlMemoryRepository(self._db)
        self.content = SqlContentRepository(self._db)
        self.learners = SqlLearnerProfileRepository(self._db)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._db is None:
            return
        try:
            await self._db.rollback()
        finally:
            await self._db.close()
            self._db = None

    async def commit(self) -> None:
        await self._require_db().commit()

    async def rollback(self) -> None:
        await self._require_db().rollback()

    def _require_db(self) -> AsyncSession:
        if self._db is None:
            raise RuntimeError("Unit of work used outside of 'async with'")
        return self._db


def sql_unit_of_work_factory(session_factory: async_sessionmaker[AsyncSession]):
    """Return a zero-arg callable producing fresh SQL units of work."""

    def factory() -> SqlUnitOfWork:
        return SqlUnitOfWork(session_factory)

    return factory
