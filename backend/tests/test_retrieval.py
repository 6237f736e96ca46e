"""Tests for knowledge-base search, formatting and the model tools."""

import asyncio
import math
from uuid import UUID

import pytest

from fakes import FakeEmbedder
from nova.domain import ContentChunk, ContentSearchResult, ContentSource
from nova.services.content_cache import ContentCacheRefresher, ContentEmbeddingCache
from nova.services.retrieval import (
    NO_RESULTS_MESSAGE,
    RETRIEVAL_TOOLS,
    TRUNCATION_MARKER,
    RetrievalEngine,
    RetrievalToolbox,
    format_results,
    merge_ranked,
)

QUERY = "how does dependency injection work"
QUERY_VECTOR = [1.0, 0.0, 0.0]


def _vector(similarity: float) -> list[float]:
    """Unit vector with the given cosine to QUERY_VECTOR."""
    return [similarity, math.sqrt(max(0.0, 1 - similarity**2)), 0.0]


def _chunk(n: int, similarity: float, source=ContentSource.BOOK, **kwargs) -> ContentChunk:
    return ContentChunk(
        id=UUID(int=n),
        source=source,
        source_identifier=f"doc-{n}",
        title=kwargs.pop("title", f"Chunk {n}"),
        content=kwargs.pop("content", f"Content of chunk {n}."),
        embedding=tuple(_vector(similarity)),
        token_count=10,
        **kwargs,
    )


def _result(n: int, similarity: float, content: str = "Some content.", **kwargs) -> ContentSearchResult:
    return ContentSearchResult(
        chunk_id=UUID(int=n),
        source=kwargs.pop("source", ContentSource.OFFICIAL_DOCS),
        title=kwargs.pop("title", f"Result {n}"),
        content=content,
        similarity=similarity,
        **kwargs,
    )


@pytest.fixture
def query_embedder():
    return FakeEmbedder({QUERY: QUERY_VECTOR})


def _engine(chunks, embedder, settings):
    return RetrievalEngine(ContentEmbeddingCache.from_chunks(chunks), embedder, settings)


class TestFormatResults:
    def test_empty_results(self):
        assert format_results([]) == NO_RESULTS_MESSAGE

    def test_deterministic_and_ordered(self):
        results = [_result(1, 0.9, title='The "DI" chapter', author="Mark Seemann"), _result(2, 0.8)]

        first = format_results(results)
        second = format_results(list(results))

        assert first == second
        assert first.startswith("<knowledge_base>\n")
        assert first.endswith("</knowledge_base>\n")
        assert 'title="The &quot;DI&quot; chapter"' in first
        assert "Author: Mark Seemann" in first
        assert first.index("Result 2") > first.index("DI")

    def test_budget_stops_before_overflowing_entry(self):
        results = [_result(1, 0.9, content="a" * 100), _result(2, 0.8, content="b" * 100)]
        text = format_results(results, max_tokens=50, chars_per_token=4)
        assert "a" * 100 in text
        assert "b" * 100 not in text

    def test_first_result_truncated_when_over_budget(self):
        results = [_result(1, 0.9, content="x" * 5000)]
        text = format_results(results, max_tokens=100, chars_per_token=4)
        assert TRUNCATION_MARKER in text
        assert "x" * 300 in text
        assert "x" * 301 not in text

    def test_source_labels(self):
        text = format_results([_result(1, 0.9, source=ContentSource.PULSE)])
        assert '<source type="Community"' in text


class TestRetrievalEngine:
    async def test_similarity_floor_is_strict(self, settings, query_embedder):
        chunks = [_chunk(1, 0.95), _chunk(2, 0.71), _chunk(3, 0.69), _chunk(4, 0.2)]
        engine = _engine(chunks, query_embedder, settings)

        results = await engine.search(QUERY, min_similarity=0.7, limit=10)

        assert [r.chunk_id for r in results] == [UUID(int=1), UUID(int=2)]
        assert all(r.similarity >= 0.7 for r in results)

    async def test_ranked_with_ties_by_id(self, settings, query_embedder):
        chunks = [_chunk(3, 0.8), _chunk(2, 0.8), _chunk(1, 0.9)]
        results = await _engine(chunks, query_embedder, settings).search(QUERY, limit=3)
        assert [r.chunk_id.int for r in results] == [1, 2, 3]

    async def test_limit_and_source_filter(self, settings, query_embedder):
        chunks = [
            _chunk(1, 0.9, source=ContentSource.BOOK),
            _chunk(2, 0.85, source=ContentSource.YOUTUBE),
            _chunk(3, 0.8, source=ContentSource.BOOK),
        ]
        engine = _engine(chunks, query_embedder, settings)

        assert [r.chunk_id.int for r in await engine.search(QUERY, source=ContentSource.BOOK)] == [1, 3]
        assert len(await engine.search(QUERY, limit=1)) == 1
        assert await engine.search(QUERY, limit=0) == []
        assert await engine.search("   ") == []

    async def test_technology_filter_ignores_case_and_author_is_exact(self, settings, query_embedder):
        chunks = [
            _chunk(1, 0.9, source=ContentSource.ARTICLE, technology="React", author="Dan Abramov"),
            _chunk(2, 0.9, source=ContentSource.ARTICLE, technology="dotnet", author="dan abramov"),
        ]
        engine = _engine(chunks, query_embedder, settings)

        by_tech = await engine.search(QUERY, technology="react")
        by_author = await engine.search(QUERY, author="Dan Abramov")

        assert [r.chunk_id.int for r in by_tech] == [1]
        assert [r.chunk_id.int for r in by_author] == [1]

    async def test_empty_store_returns_nothing(self, settings, query_embedder):
        assert await _engine([], query_embedder, settings).search(QUERY) == []

    async def test_cache_loads_from_store(self, settings, store, query_embedder):
        chunk = _chunk(1, 0.9)
        store.state.chunks[chunk.id] = chunk
        cache = ContentEmbeddingCache(store.unit_of_work)

        results = await RetrievalEngine(cache, query_embedder, settings).search(QUERY)

        assert cache.size == 1
        assert [r.chunk_id for r in results] == [chunk.id]

    async def test_chunks_ingested_later_appear_after_refresh(self, settings, store, query_embedder):
        first = _chunk(1, 0.9)
        store.state.chunks[first.id] = first
        engine = RetrievalEngine(ContentEmbeddingCache(store.unit_of_work), query_embedder, settings)
        assert [r.chunk_id for r in await engine.search(QUERY)] == [first.id]

        later = _chunk(2, 0.95)
        store.state.chunks[later.id] = later
        assert [r.chunk_id for r in await engine.search(QUERY)] == [first.id]

        assert await engine.cache.refresh() == 2
        assert [r.chunk_id for r in await engine.search(QUERY)] == [later.id, first.id]


class TestContentCacheRefresher:
    async def test_periodic_refresh_picks_up_new_chunks(self, store):
        cache = ContentEmbeddingCache(store.unit_of_work)
        await cache.ensure_loaded()
        assert cache.size == 0

        refresher = ContentCacheRefresher(cache, interval_seconds=0.01)
        refresher.start()
        try:
            chunk = _chunk(1, 0.9)
            store.state.chunks[chunk.id] = chunk
            for _ in range(100):
                if cache.size == 1:
                    break
                await asyncio.sleep(0.01)
        finally:
            await refresher.stop()

        assert cache.size == 1
        assert not refresher.running

    def test_disabled_when_interval_is_zero(self, store):
        refresher = ContentCacheRefresher(ContentEmbeddingCache(store.unit_of_work), interval_seconds=0)
        refresher.start()
        assert not refresher.running


class TestGatherContext:
    async def test_every_source_present_and_embedding_shared(self, settings, query_embedder):
        chunks = [_chunk(1, 0.9, source=ContentSource.BOOK), _chunk(2, 0.8, source=ContentSource.OFFICIAL_DOCS)]
        engine = _engine(chunks, query_embedder, settings)

        context = await engine.gather_context(QUERY, [ContentSource.BOOK, ContentSource.OFFICIAL_DOCS, ContentSource.PULSE])

        assert set(context) == {ContentSource.BOOK, ContentSource.OFFICIAL_DOCS, ContentSource.PULSE}
        assert context[ContentSource.PULSE] == []
        assert query_embedder.calls == [QUERY]
        assert [r.chunk_id.int for r in merge_ranked(context)] == [1, 2]

    async def test_slow_source_times_out_without_failing_others(self, settings, query_embedder):
        engine = _engine([_chunk(1, 0.9, source=ContentSource.BOOK)], query_embedder, settings)
        original = engine.search

        async def search(query, **kwargs):
            if kwargs.get("source") == ContentSource.YOUTUBE:
                await asyncio.sleep(10)
            return await original(query, **kwargs)

        engine.search = search
        context = await engine.gather_context(QUERY, [ContentSource.BOOK, ContentSource.YOUTUBE], timeout=0.05)

        assert [r.chunk_id.int for r in context[ContentSource.BOOK]] == [1]
        assert context[ContentSource.YOUTUBE] == []

    async def test_embedding_failure_empties_every_source(self, settings):
        engine = _engine([_chunk(1, 0.9)], FakeEmbedder(fail=True), settings)
        context = await engine.gather_context(QUERY, [ContentSource.BOOK, ContentSource.ARTICLE])
        assert context == {ContentSource.BOOK: [], ContentSource.ARTICLE: []}

    async def test_precomputed_embedding_is_reused(self, settings):
        embedder = FakeEmbedder(fail=True)
        engine = _engine([_chunk(1, 0.9)], embedder, settings)

        context = await engine.gather_context(QUERY, [ContentSource.BOOK], query_embedding=QUERY_VECTOR)

        assert [r.chunk_id.int for r in context[ContentSource.BOOK]] == [1]
        assert embedder.calls == []


class TestRetrievalToolbox:
    def test_definitions_cover_each_source_and_the_whole_base(self, settings, query_embedder):
        toolbox = RetrievalToolbox(_engine([], query_embedder, settings), settings)
        definitions = {d["name"]: d for d in toolbox.definitions()}

        assert set(definitions) == {tool.name for tool in RETRIEVAL_TOOLS}
        assert "search_knowledge_base" in definitions
        assert definitions["search_books"]["input_schema"]["required"] == ["query"]
        assert "author" in definitions["search_books"]["input_schema"]["properties"]
        assert "technology" in definitions["search_official_docs"]["input_schema"]["properties"]

    async def test_invoke_formats_results(self, settings, query_embedder):
        engine = _engine([_chunk(1, 0.9, source=ContentSource.BOOK, title="Dependency Injection")], query_embedder, settings)
        output = await RetrievalToolbox(engine, settings).invoke("search_books", {"query": QUERY})
        assert 'title="Dependency Injection"' in output

    async def test_invoke_reports_problems_as_text(self, settings, query_embedder):
        toolbox = RetrievalToolbox(_engine([], query_embedder, settings), settings)
        assert "Unknown tool" in await toolbox.invoke("search_everything", {"query": QUERY})
        assert "query" in await toolbox.invoke("search_books", {"query": " "})
        assert await toolbox.invoke("search_books", {"query": QUERY}) == NO_RESULTS_MESSAGE
