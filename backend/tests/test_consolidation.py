"""Tests for memory consolidation."""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from fakes import BASE_TIME, FakeEmbedder, FakeExtractor, hashed_vector
from nova.domain import Memory, MemoryCandidate, MemoryCategory, check_supersession_chain
from nova.errors import ExtractionError, NotFoundError
from nova.services.consolidation import (
    ConsolidationWorker,
    MemoryConsolidationEngine,
    find_near_duplicate,
    unprocessed_slice,
)

TURN = [("user", "I'm building a REST API in Go"), ("assistant", "Great, let's talk about handlers.")]


def _candidate(category: MemoryCategory, content: str, importance: int = 3) -> MemoryCandidate:
    return MemoryCandidate.create(category, content, importance)


@pytest.fixture
def engine(settings, store, extractor, embedder) -> MemoryConsolidationEngine:
    return MemoryConsolidationEngine(store.unit_of_work, extractor, embedder, settings)


class TestUnprocessedSlice:
    def test_stops_after_last_assistant_message(self, store, profile_id):
        session = store.seed_session(profile_id, [*TURN, ("user", "And middleware?")])
        messages = store.messages_in(session.id)
        assert unprocessed_slice(messages) == messages[:2]

    def test_empty_without_assistant_message(self, store, profile_id):
        session = store.seed_session(profile_id, [("user", "hello")])
        assert unprocessed_slice(store.messages_in(session.id)) == []


class TestSingleSlot:
    async def test_new_focus_supersedes_old(self, engine, store, extractor, profile_id):
        old_session = store.seed_session(profile_id, TURN)
        old = store.seed_memory(profile_id, old_session.id, MemoryCategory.CURRENT_FOCUS, "Learning Rust")
        session = store.seed_session(profile_id, TURN, start=BASE_TIME + timedelta(days=1))
        extractor.candidates = [_candidate(MemoryCategory.CURRENT_FOCUS, "Building a REST API in Go")]

        result = await engine.consolidate(session.id)

        active = store.active_memories(profile_id, MemoryCategory.CURRENT_FOCUS)
        assert [m.content for m in active] == ["Building a REST API in Go"]
        replaced = store.state.memories[old.id]
        assert replaced.superseded_by_id == active[0].id
        assert replaced.superseded_at is not None
        assert result.memories_created == 1 and result.memories_superseded == 1
        check_supersession_chain(list(store.state.memories.values()))

    async def test_equal_fact_is_a_no_op(self, engine, store, extractor, profile_id):
        session = store.seed_session(profile_id, TURN)
        existing = store.seed_memory(profile_id, session.id, MemoryCategory.CURRENT_FOCUS, "Learning Rust")
        extractor.candidates = [_candidate(MemoryCategory.CURRENT_FOCUS, "  learning rust. ")]

        result = await engine.consolidate(session.id)

        assert store.active_memories(profile_id) == [existing]
        assert result.memories_created == 0 and result.memories_superseded == 0
        assert not result.skipped


class TestMultiSlot:
    async def test_distinct_facts_accumulate(self, engine, store, extractor, profile_id):
        session = store.seed_session(profile_id, TURN)
        store.seed_memory(profile_id, session.id, MemoryCategory.STRUGGLE_IDENTIFIED, "Async/await")
        extractor.candidates = [_candidate(MemoryCategory.STRUGGLE_IDENTIFIED, "Generics")]

        await engine.consolidate(session.id)

        contents = sorted(m.content for m in store.active_memories(profile_id, MemoryCategory.STRUGGLE_IDENTIFIED))
        assert contents == ["Async/await", "Generics"]

    async def test_duplicate_is_reinforced(self, engine, store, extractor, profile_id):
        session = store.seed_session(profile_id, TURN)
        existing = store.seed_memory(profile_id, session.id, MemoryCategory.TOPIC_DISCUSSED, "Dependency injection", importance=2)
        extractor.candidates = [_candidate(MemoryCategory.TOPIC_DISCUSSED, "dependency injection", importance=4)]

        result = await engine.consolidate(session.id)

        [memory] = store.active_memories(profile_id)
        assert memory.id == existing.id
        assert memory.occurrence_count == 2
        assert memory.importance == 4
        assert result.memories_reinforced == 1

    async def test_near_duplicate_found_by_embedding(self, settings, store, extractor, profile_id):
        embedder = FakeEmbedder({"Understands DI containers": [1.0, 0.01, 0.0]})
        engine = MemoryConsolidationEngine(store.unit_of_work, extractor, embedder, settings)
        session = store.seed_session(profile_id, TURN)
        store.seed_memory(
            profile_id, session.id, MemoryCategory.STRENGTH_DEMONSTRATED, "Knows DI containers well",
            embedding=[1.0, 0.0, 0.0],
        )
        extractor.candidates = [_candidate(MemoryCategory.STRENGTH_DEMONSTRATED, "Understands DI containers")]

        result = await engine.consolidate(session.id)

        assert result.memories_reinforced == 1
        assert len(store.active_memories(profile_id)) == 1


def test_find_near_duplicate_prefers_text_match():
    profile_id, session_id = uuid4(), uuid4()
    text_match = Memory.create(
        profile_id, session_id, _candidate(MemoryCategory.TOPIC_DISCUSSED, "Closures"), embedding=hashed_vector("a")
    )
    vector_match = Memory.create(
        profile_id, session_id, _candidate(MemoryCategory.TOPIC_DISCUSSED, "Lambdas"), embedding=hashed_vector("b")
    )
    candidate = _candidate(MemoryCategory.TOPIC_DISCUSSED, "closures!")

    assert find_near_duplicate(candidate, hashed_vector("b"), [vector_match, text_match], 0.92) is text_match
    assert find_near_duplicate(_candidate(MemoryCategory.TOPIC_DISCUSSED, "Other"), hashed_vector("b"), [text_match, vector_match], 0.92) is vector_match
    assert find_near_duplicate(_candidate(MemoryCategory.TOPIC_DISCUSSED, "Other"), hashed_vector("c"), [text_match, vector_match], 0.92) is None


class TestWatermark:
    async def test_second_pass_is_idempotent(self, engine, store, extractor, profile_id):
        session = store.seed_session(profile_id, TURN)
        extractor.candidates = [_candidate(MemoryCategory.TOPIC_DISCUSSED, "Go handlers")]

        first = await engine.consolidate(session.id)
        snapshot = dict(store.state.memories)
        second = await engine.consolidate(session.id)

        assert first.messages_processed == 2
        assert second.skipped
        assert store.state.memories == snapshot
        assert len(extractor.calls) == 1
        assert store.state.sessions[session.id].last_processed_message_id == store.messages_in(session.id)[-1].id

    async def test_only_new_messages_are_processed(self, engine, store, extractor, profile_id):
        session = store.seed_session(profile_id, TURN)
        await engine.consolidate(session.id)
        store.seed_message(session.id, "user", "What about testing?", at=BASE_TIME + timedelta(minutes=5))
        store.seed_message(session.id, "assistant", "Use table-driven tests.", at=BASE_TIME + timedelta(minutes=6))

        result = await engine.consolidate(session.id)

        assert result.messages_processed == 2
        assert [m.content for m in extractor.calls[-1]] == ["What about testing?", "Use table-driven tests."]

    async def test_no_assistant_message_is_skipped(self, engine, store, extractor, profile_id):
        session = store.seed_session(profile_id, [("user", "hello")])
        result = await engine.consolidate(session.id)
        assert result.skipped
        assert extractor.calls == []

    async def test_failure_leaves_watermark_and_memories_unchanged(self, settings, store, profile_id, embedder):
        extractor = FakeExtractor(error=ExtractionError("bad reply"))
        engine = MemoryConsolidationEngine(store.unit_of_work, extractor, embedder, settings)
        session = store.seed_session(profile_id, TURN)

        with pytest.raises(ExtractionError):
            await engine.consolidate(session.id)

        assert store.state.sessions[session.id].last_processed_message_id is None
        assert store.state.memories == {}

    async def test_unexpected_failure_is_wrapped(self, settings, store, profile_id, extractor):
        engine = MemoryConsolidationEngine(store.unit_of_work, extractor, FakeEmbedder(fail=True), settings)
        session = store.seed_session(profile_id, TURN)
        extractor.candidates = [_candidate(MemoryCategory.TOPIC_DISCUSSED, "Go")]

        with pytest.raises(ExtractionError):
            await engine.consolidate(session.id)
        assert store.state.sessions[session.id].last_processed_message_id is None

    async def test_missing_session(self, engine):
        with pytest.raises(NotFoundError):
            await engine.consolidate(uuid4())

    async def test_concurrent_passes_write_once(self, settings, store, profile_id, embedder):
        extractor = FakeExtractor([_candidate(MemoryCategory.QUESTION_ASKED, "How do goroutines work?")], delay=0.02)
        engine = MemoryConsolidationEngine(store.unit_of_work, extractor, embedder, settings)
        session = store.seed_session(profile_id, TURN)

        results = await asyncio.gather(engine.consolidate(session.id), engine.consolidate(session.id))

        assert sorted(r.skipped for r in results) == [False, True]
        assert len(store.active_memories(profile_id)) == 1

    async def test_pass_that_lost_the_race_writes_nothing(self, settings, store, profile_id, embedder):
        extractor = FakeExtractor([_candidate(MemoryCategory.QUESTION_ASKED, "How do goroutines work?")])
        engine = MemoryConsolidationEngine(store.unit_of_work, extractor, embedder, settings)
        session = store.seed_session(profile_id, TURN)
        last = store.messages_in(session.id)[-1]

        async def another_process_wins():
            # Another worker advances the watermark while this pass is extracting
            store.state.sessions[session.id] = store.state.sessions[session.id].mark_extracted(last.id)

        extractor.on_extract = another_process_wins
        result = await engine.consolidate(session.id)

        assert result.skipped
        assert store.state.memories == {}


async def test_consolidate_profile_covers_pending_sessions(engine, store, extractor, profile_id):
    first = store.seed_session(profile_id, TURN)
    store.seed_session(profile_id, TURN, start=BASE_TIME + timedelta(hours=1))
    store.seed_session(uuid4(), TURN)
    extractor.candidates = [_candidate(MemoryCategory.TOPIC_DISCUSSED, "Go")]
    await engine.consolidate(first.id)

    result = await engine.consolidate_profile(profile_id)

    assert result.sessions_processed == 1
    assert result.sessions_failed == 0


async def test_worker_processes_queue(engine, store, extractor, profile_id):
    session = store.seed_session(profile_id, TURN)
    extractor.candidates = [_candidate(MemoryCategory.TOPIC_DISCUSSED, "Go")]
    worker = ConsolidationWorker(engine)
    worker.start()
    try:
        assert worker.enqueue(session.id)
        assert worker.enqueue(uuid4())  # missing session is logged, not fatal
        await asyncio.wait_for(worker.join(), 1)
    finally:
        await worker.stop()

    assert not worker.running
    assert [m.content for m in store.active_memories(profile_id)] == ["Go"]


def test_worker_drops_when_full(engine):
    worker = ConsolidationWorker(engine, maxsize=1)
    assert worker.enqueue(uuid4())
    assert not worker.enqueue(uuid4())
