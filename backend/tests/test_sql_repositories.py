"""Statement-level tests for the SQLAlchemy repositories.

The repositories run against a recording session; each executed statement
is compiled with the PostgreSQL dialect and checked for the clauses that
carry the ordering and watermark rules.
"""

from datetime import timedelta
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy.dialects import postgresql

from fakes import BASE_TIME
from nova.repositories.conversations import SqlConversationRepository
from nova.repositories.memories import SqlMemoryRepository


class _Result:
    def __init__(self, rows):
        self.rows = list(rows)

    def scalar_one_or_none(self):
        return self.rows[0] if self.rows else None

    def scalars(self):
        return _Scalars(self.rows)

    def all(self):
        return list(self.rows)


class _Scalars(list):
    def all(self):
        return list(self)


class RecordingSession:
    """Stands in for ``AsyncSession``: records statements, returns no rows."""

    def __init__(self, rows_by_id=None):
        self.rows_by_id = rows_by_id or {}
        self.executed = []

    async def get(self, model, ident):
        return self.rows_by_id.get(ident)

    async def execute(self, statement, execution_options=None):
        self.executed.append((statement, execution_options))
        return _Result([])


def _compiled(statement):
    return statement.compile(dialect=postgresql.dialect())


def _sql(statement) -> str:
    return " ".join(str(_compiled(statement)).split())


@pytest.fixture
def db():
    return RecordingSession()


class TestConversationStatements:
    async def test_find_session_for_update_locks_and_rereads(self, db):
        assert await SqlConversationRepository(db).find_session_for_update(uuid4()) is None

        [(statement, options)] = db.executed
        assert _sql(statement).endswith("FOR UPDATE")
        assert options == {"populate_existing": True}

    async def test_messages_after_watermark_compare_created_at_then_seq(self):
        session_id = uuid4()
        watermark = SimpleNamespace(id=uuid4(), session_id=session_id, created_at=BASE_TIME, seq=42)
        db = RecordingSession({watermark.id: watermark})

        await SqlConversationRepository(db).list_messages_after(session_id, watermark.id)

        [(statement, _)] = db.executed
        sql = _sql(statement)
        assert "(nova_messages.created_at, nova_messages.seq) > (" in sql
        assert sql.endswith("ORDER BY nova_messages.created_at ASC, nova_messages.seq ASC")
        params = _compiled(statement).params.values()
        assert BASE_TIME in params and 42 in params and session_id in params

    async def test_watermark_from_another_session_is_ignored(self):
        session_id = uuid4()
        foreign = SimpleNamespace(id=uuid4(), session_id=uuid4(), created_at=BASE_TIME, seq=7)
        db = RecordingSession({foreign.id: foreign})

        await SqlConversationRepository(db).list_messages_after(session_id, foreign.id)

        [(statement, _)] = db.executed
        assert "nova_messages.seq) >" not in _sql(statement)

    async def test_no_watermark_reads_whole_session(self, db):
        await SqlConversationRepository(db).list_messages_after(uuid4(), None)

        [(statement, _)] = db.executed
        sql = _sql(statement)
        assert "WHERE nova_messages.session_id = " in sql
        assert " > " not in sql

    async def test_last_n_messages_take_newest_first(self, db):
        await SqlConversationRepository(db).list_messages(uuid4(), limit=20)

        [(statement, _)] = db.executed
        sql = _sql(statement)
        assert "ORDER BY nova_messages.created_at DESC, nova_messages.seq DESC LIMIT" in sql

    async def test_session_keyset_pagination(self, db):
        before = (BASE_TIME + timedelta(hours=1), uuid4())

        await SqlConversationRepository(db).list_sessions(uuid4(), limit=20, before=before)

        [(statement, _)] = db.executed
        sql = _sql(statement)
        assert "nova_conversation_sessions.is_deleted IS false" in sql
        assert "nova_conversation_sessions.last_message_at < " in sql
        assert "nova_conversation_sessions.last_message_at = " in sql
        assert "nova_conversation_sessions.id < " in sql
        assert (
            "ORDER BY nova_conversation_sessions.last_message_at DESC, nova_conversation_sessions.id DESC LIMIT"
            in sql
        )


class TestMemoryStatements:
    async def test_active_means_not_superseded(self, db):
        await SqlMemoryRepository(db).list_active(uuid4())

        [(statement, _)] = db.executed
        sql = _sql(statement)
        assert "nova_memories.superseded_at IS NULL" in sql
        assert "ORDER BY nova_memories.created_at DESC, nova_memories.id" in sql

    async def test_min_importance_ordering(self, db):
        await SqlMemoryRepository(db).list_by_min_importance(uuid4(), 4, 5)

        [(statement, _)] = db.executed
        sql = _sql(statement)
        assert "nova_memories.importance >= " in sql
        assert "ORDER BY nova_memories.importance DESC, nova_memories.created_at DESC LIMIT" in sql

    async def test_with_embeddings_skips_missing_vectors(self, db):
        await SqlMemoryRepository(db).list_with_embeddings(uuid4())

        [(statement, _)] = db.executed
        assert "nova_memories.embedding IS NOT NULL" in _sql(statement)
