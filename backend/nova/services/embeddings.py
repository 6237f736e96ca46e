"""Text embeddings via the OpenAI API, plus vector similarity helpers."""

import asyncio
import logging
from collections.abc import Sequence
from typing import Protocol

import numpy as np
from openai import AsyncOpenAI

from nova.config import Settings, get_settings
from nova.errors import UpstreamTimeoutError

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    async def embed(self, text: str) -> list[float]: ...


class OpenAIEmbeddingService:
    """Embeds text with an OpenAI embedding model."""

    def __init__(self, settings: Settings | None = None, client: AsyncOpenAI | None = None):
        self.settings = settings or get_settings()
        self.client = client or AsyncOpenAI(api_key=self.settings.openai_api_key)

    async def embed(self, text: str) -> list[float]:
        response = await self.client.embeddings.create(
            model=self.settings.embedding_model,
            input=text,
        )
        return list(response.data[0].embedding)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when either is zero or dimensions differ."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)


async def embed_within(embedder: Embedder, text: str, timeout: float) -> list[float] | None:
    """
    Embed ``text``, giving up after ``timeout`` seconds.

    Returns None when the embedding times out or fails, so callers can
    carry on without similarity search.
    """
    if not text.strip():
        return None
    try:
        return await asyncio.wait_for(embedder.embed(text), timeout)
    except asyncio.TimeoutError:
        logger.warning(
            "Query embedding timed out after %.1fs (%s); continuing without similarity search",
            timeout, UpstreamTimeoutError.kind,
        )
    except Exception:
        logger.exception("Query embedding failed; continuing without similarity search")
    return None
