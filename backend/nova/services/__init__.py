"""Chat, retrieval and memory services."""

from nova.services.chat import ChatOrchestrator
from nova.services.consolidation import ConsolidationWorker, MemoryConsolidationEngine
from nova.services.content_cache import ContentEmbeddingCache
from nova.services.embeddings import OpenAIEmbeddingService
from nova.services.extraction import LlmFactExtractor
from nova.services.llm import AnthropicLlmService
from nova.services.recall import MemoryRecall
from nova.services.retrieval import RetrievalEngine, RetrievalToolbox, format_results

__all__ = [
    "AnthropicLlmService",
    "ChatOrchestrator",
    "ConsolidationWorker",
    "ContentEmbeddingCache",
    "LlmFactExtractor",
    "MemoryConsolidationEngine",
    "MemoryRecall",
    "OpenAIEmbeddingService",
    "RetrievalEngine",
    "RetrievalToolbox",
    "format_results",
]
