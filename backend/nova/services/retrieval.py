"""
Multi-source retrieval over the knowledge base.

Provides per-source similarity search, deterministic token-budgeted
formatting, model-callable search tools (one per source plus one across all
sources) and a concurrent fan-out used for pre-stream context assembly.
"""

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from nova.config import Settings, get_settings
from nova.domain import ContentSearchResult, ContentSource
from nova.errors import UpstreamTimeoutError
from nova.services.content_cache import ContentEmbeddingCache
from nova.services.embeddings import Embedder, embed_within

logger = logging.getLogger(__name__)

NO_RESULTS_MESSAGE = "No relevant results found in the knowledge base."
TRUNCATION_MARKER = "... [truncated]"
# Characters held back from a truncated first result
TRUNCATION_RESERVE = 100

_KNOWLEDGE_BASE_INTRO = (
    "The following content is from the knowledge base. "
    "Use this as your PRIMARY source for answering."
)


# =============================================================================
# FORMATTING
# =============================================================================


def _escape_attribute(value: str) -> str:
    return value.replace("&", "&amp;").replace('"', "&quot;").replace("\n", " ")


def _format_entry(result: ContentSearchResult, content: str) -> str:
    lines = [f'<source type="{result.source.label}" title="{_escape_attribute(result.title)}">']
    if result.author and result.author.strip():
        lines.append(f"Author: {result.author}")
    lines.append("")
    lines.append(content)
    lines.append("</source>")
    lines.append("")
    return "\n".join(lines) + "\n"


def format_results(
    results: Sequence[ContentSearchResult],
    max_tokens: int = 2000,
    chars_per_token: int = 4,
) -> str:
    """
    Render ranked results for the model within an approximate token budget.

    Results are appended in the given order while the entries fit in
    ``max_tokens * chars_per_token`` characters. If the first entry alone is
    over budget its content is cut short and marked with ``TRUNCATION_MARKER``,
    so the output is never empty when there are results. An empty input
    yields ``NO_RESULTS_MESSAGE``.

    Pure: equal inputs give byte-identical output.
    """
    if not results:
        return NO_RESULTS_MESSAGE

    budget = max(0, max_tokens * chars_per_token)
    parts = ["<knowledge_base>\n", _KNOWLEDGE_BASE_INTRO + "\n", "\n"]
    used = 0

    for result in results:
        entry = _format_entry(result, result.content)
        if used + len(entry) > budget:
            if used == 0:
                keep = max(0, budget - TRUNCATION_RESERVE)
                content = result.content
                if len(content) > keep:
                    content = content[:keep] + TRUNCATION_MARKER
                parts.append(_format_entry(result, content))
            break
        parts.append(entry)
        used += len(entry)

    parts.append("</knowledge_base>\n")
    return "".join(parts)


# =============================================================================
# SEARCH
# =============================================================================


class RetrievalEngine:
    """Similarity search over the content cache."""

    def __init__(
        self,
        cache: ContentEmbeddingCache,
        embedder: Embedder,
        settings: Settings | None = None,
    ):
        self.cache = cache
        self.embedder = embedder
        self.settings = settings or get_settings()

    async def search(
        self,
        query: str,
        *,
        source: ContentSource | None = None,
        technology: str | None = None,
        author: str | None = None,
        limit: int = 5,
        min_similarity: float = 0.7,
        query_embedding: list[float] | None = None,
    ) -> list[ContentSearchResult]:
        """
        Ranked results at or above ``min_similarity``, at most ``limit``.

        Fewer results than ``limit`` (including none) is a valid outcome.
        Pass ``query_embedding`` to reuse an embedding across several searches.
        """
        if not query.strip() or limit <= 0:
            return []

        await self.cache.ensure_loaded()
        if self.cache.size == 0:
            return []

        if query_embedding is None:
            query_embedding = await self.embedder.embed(query)

        matches = self.cache.rank(
            query_embedding,
            source=source,
            technology=technology,
            author=author,
            min_similarity=min_similarity,
            limit=limit,
        )
        return [
            ContentSearchResult(
                chunk_id=chunk.id,
                source=chunk.source,
                source_url=chunk.source_url,
                title=chunk.title,
                content=chunk.content,
                author=chunk.author,
                technology=chunk.technology,
                similarity=similarity,
            )
            for chunk, similarity in matches
        ]

    async def gather_context(
        self,
        query: str,
        sources: Iterable[ContentSource],
        *,
        limit_per_source: int | None = None,
        min_similarity: float | None = None,
        timeout: float | None = None,
        query_embedding: list[float] | None = None,
    ) -> dict[ContentSource, list[ContentSearchResult]]:
        """
        Search several sources concurrently, each bounded by ``timeout``.

        A source that fails or times out contributes an empty list. The query
        is embedded once (unless ``query_embedding`` is given) and shared by
        every source search; if that fails, every source is empty.
        """
        sources = list(dict.fromkeys(sources))
        if not sources or not query.strip():
            return {}

        limit = limit_per_source or self.settings.retrieval_limit_per_source
        floor = self.settings.retrieval_min_similarity if min_similarity is None else min_similarity
        timeout = timeout or self.settings.retrieval_timeout_seconds

        if query_embedding is None:
            query_embedding = await embed_within(self.embedder, query, timeout)
            if query_embedding is None:
                return {source: [] for source in sources}

        outcomes = await asyncio.gather(
            *(
                asyncio.wait_for(
                    self.search(
                        query,
                        source=source,
                        limit=limit,
                        min_similarity=floor,
                        query_embedding=query_embedding,
                    ),
                    timeout,
                )
                for source in sources
            ),
            return_exceptions=True,
        )

        context: dict[ContentSource, list[ContentSearchResult]] = {}
        for source, outcome in zip(sources, outcomes):
            if isinstance(outcome, asyncio.TimeoutError):
                logger.warning(
                    "Retrieval from %s timed out after %.1fs (%s)", source.value, timeout, UpstreamTimeoutError.kind
                )
                context[source] = []
            elif isinstance(outcome, BaseException):
                logger.error("Retrieval from %s failed: %s", source.value, outcome)
                context[source] = []
            else:
                context[source] = outcome
        return context


def merge_ranked(context: dict[ContentSource, list[ContentSearchResult]]) -> list[ContentSearchResult]:
    """Flatten per-source results into one list ranked by similarity (ties by chunk id)."""
    merged = [result for results in context.values() for result in results]
    merged.sort(key=lambda r: (-r.similarity, str(r.chunk_id)))
    return merged


# =============================================================================
# MODEL TOOLS
# =============================================================================


@dataclass(frozen=True)
class RetrievalTool:
    """A search the model can call by name."""

    name: str
    description: str
    source: ContentSource | None
    limit: int = 5
    min_similarity: float = 0.6
    filter_by_technology: bool = False
    filter_by_author: bool = False

    def definition(self) -> dict[str, Any]:
        properties: dict[str, Any] = {
            "query": {
                "type": "string",
                "description": "The search query - describe the concept, pattern, or topic you want to learn about",
            }
        }
        if self.filter_by_technology:
            properties["technology"] = {
                "type": "string",
                "description": "Optional technology to restrict results to, e.g. 'dotnet', 'react', 'typescript'",
            }
        if self.filter_by_author:
            properties["author"] = {
                "type": "string",
                "description": "Optional author name to restrict results to",
            }
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": {
                "type": "object",
                "properties": properties,
                "required": ["query"],
            },
        }


RETRIEVAL_TOOLS: tuple[RetrievalTool, ...] = (
    RetrievalTool(
        name="search_official_docs",
        description="Search official documentation (.NET, React, TypeScript and others) for API references, framework behavior and configuration details.",
        source=ContentSource.OFFICIAL_DOCS,
        filter_by_technology=True,
    ),
    RetrievalTool(
        name="search_books",
        description="Search technical books on architecture, domain-driven design, design patterns and engineering practice.",
        source=ContentSource.BOOK,
        filter_by_author=True,
    ),
    RetrievalTool(
        name="search_videos",
        description="Search YouTube tutorial and walkthrough transcripts for practical, step-by-step explanations.",
        source=ContentSource.YOUTUBE,
        min_similarity=0.5,
        filter_by_technology=True,
    ),
    RetrievalTool(
        name="search_articles",
        description="Search expert blog articles for opinions, case studies and in-depth write-ups.",
        source=ContentSource.ARTICLE,
        filter_by_author=True,
        filter_by_technology=True,
    ),
    RetrievalTool(
        name="search_community",
        description="Search community discussions for real-world experiences and common pitfalls.",
        source=ContentSource.PULSE,
    ),
    RetrievalTool(
        name="search_knowledge_base",
        description="Search the whole knowledge base across books, official documentation, video tutorials, articles and community discussions. Returns the most relevant content regardless of source type.",
        source=None,
        limit=8,
        min_similarity=0.5,
    ),
)


class RetrievalToolbox:
    """Exposes ``RETRIEVAL_TOOLS`` to the LLM adapter and runs them on request."""

    def __init__(
        self,
        engine: RetrievalEngine,
        settings: Settings | None = None,
        tools: Sequence[RetrievalTool] = RETRIEVAL_TOOLS,
    ):
        self.engine = engine
        self.settings = settings or get_settings()
        self._tools = {tool.name: tool for tool in tools}

    def definitions(self) -> list[dict[str, Any]]:
        return [tool.definition() for tool in self._tools.values()]

    async def invoke(self, name: str, arguments: dict[str, Any]) -> str:
        """Run a tool and return its formatted output. Failures are reported to the model as text."""
        tool = self._tools.get(name)
        if tool is None:
            logger.warning("Model called unknown tool %s", name)
            return f"Unknown tool: {name}"

        query = str(arguments.get("query") or "").strip()
        if not query:
            return "A non-empty 'query' is required."

        technology = arguments.get("technology") if tool.filter_by_technology else None
        author = arguments.get("author") if tool.filter_by_author else None

        try:
            results = await asyncio.wait_for(
                self.engine.search(
                    query,
                    source=tool.source,
                    technology=technology or None,
                    author=author or None,
                    limit=tool.limit,
                    min_similarity=tool.min_similarity,
                ),
                self.settings.retrieval_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Tool %s timed out (%s)", name, UpstreamTimeoutError.kind)
            return "The search timed out. Answer from your own knowledge."
        except Exception:
            logger.exception("Tool %s failed", name)
            return "The search is temporarily unavailable. Answer from your own knowledge."

        logger.debug("Tool %s for %r returned %d results", name, query, len(results))
        return format_results(
            results,
            max_tokens=self.settings.retrieval_max_tokens,
            chars_per_token=self.settings.retrieval_chars_per_token,
        )
