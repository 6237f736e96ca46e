"""
FastAPI Dependencies for Authentication and Service Wiring.

Key patterns:
1. get_current_profile_id: Extracts and validates the JWT, returns the profile id
2. Profile-scoped access: every service call takes the profile id explicitly
3. No global "current profile" state - always pass it explicitly

Security model:
- Tokens are issued by the identity service; this service only verifies them
- JWT in an HttpOnly cookie or an Authorization header
- Ownership checks happen in the services, which raise AccessDeniedError
"""

import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from functools import lru_cache
from typing import Annotated
from uuid import UUID

from fastapi import Cookie, Depends, Header, HTTPException, status
from jose import JWTError, jwt

from nova.config import Settings, get_settings
from nova.repositories import UnitOfWork, sql_unit_of_work_factory
from nova.services.chat import ChatOrchestrator
from nova.services.consolidation import ConsolidationWorker, MemoryConsolidationEngine
from nova.services.content_cache import ContentCacheRefresher, ContentEmbeddingCache
from nova.services.embeddings import Embedder, OpenAIEmbeddingService
from nova.services.extraction import FactExtractor, LlmFactExtractor
from nova.services.llm import AnthropicLlmService, LlmService
from nova.services.recall import MemoryRecall
from nova.services.retrieval import RetrievalEngine, RetrievalToolbox

logger = logging.getLogger(__name__)


# =============================================================================
# JWT UTILITIES
# =============================================================================


def decode_access_token(token: str) -> UUID | None:
    """
    Decode and validate a JWT access token.

    Returns the profile id (``sub`` claim) if valid, None if invalid/expired.
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
        profile_id_str = payload.get("sub")
        if profile_id_str is None:
            return None
        return UUID(profile_id_str)
    except (JWTError, ValueError):
        return None


# =============================================================================
# AUTHENTICATION DEPENDENCIES
# =============================================================================


async def get_token_from_request(
    authorization: Annotated[str | None, Header()] = None,
    access_token: Annotated[str | None, Cookie()] = None,
) -> str:
    """
    Extract JWT token from request.

    Supports two methods (in order of preference):
    1. HttpOnly cookie named 'access_token'
    2. Authorization header: 'Bearer <token>'
    """
    if access_token:
        return access_token

    if authorization:
        parts = authorization.split()
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1]

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_profile_id(
    token: Annotated[str, Depends(get_token_from_request)],
) -> UUID:
    """
    Validate JWT and return the authenticated profile id.

    Raises 401 if the token is invalid, expired or has no subject.
    """
    profile_id = decode_access_token(token)
    if profile_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return profile_id


CurrentProfile = Annotated[UUID, Depends(get_current_profile_id)]


# =============================================================================
# SERVICE WIRING
# =============================================================================


@dataclass
class NovaServices:
    """Object graph shared by all requests."""

    uow_factory: Callable[[], UnitOfWork]
    content_cache: ContentEmbeddingCache
    cache_refresher: ContentCacheRefresher
    retrieval: RetrievalEngine
    orchestrator: ChatOrchestrator
    consolidation: MemoryConsolidationEngine
    worker: ConsolidationWorker


def build_services(
    settings: Settings,
    uow_factory: Callable[[], UnitOfWork],
    *,
    llm: LlmService | None = None,
    embedder: Embedder | None = None,
    extractor: FactExtractor | None = None,
    content_cache: ContentEmbeddingCache | None = None,
) -> NovaServices:
    """Wire the services. Collaborators default to the Anthropic/OpenAI-backed ones."""
    llm = llm or AnthropicLlmService(settings)
    embedder = embedder or OpenAIEmbeddingService(settings)
    extractor = extractor or LlmFactExtractor(llm, settings)
    content_cache = content_cache or ContentEmbeddingCache(uow_factory)

    retrieval = RetrievalEngine(content_cache, embedder, settings)
    consolidation = MemoryConsolidationEngine(uow_factory, extractor, embedder, settings)
    worker = ConsolidationWorker(consolidation)
    orchestrator = ChatOrchestrator(
        uow_factory,
        llm,
        MemoryRecall(embedder, settings),
        retrieval=retrieval,
        tools=RetrievalToolbox(retrieval, settings),
        consolidation=worker,
        settings=settings,
    )
    return NovaServices(
        uow_factory=uow_factory,
        content_cache=content_cache,
        cache_refresher=ContentCacheRefresher(content_cache, settings.content_cache_refresh_seconds),
        retrieval=retrieval,
        orchestrator=orchestrator,
        consolidation=consolidation,
        worker=worker,
    )


@lru_cache
def get_services() -> NovaServices:
    """Get the cached production object graph."""
    from nova.db.session import AsyncSessionLocal

    return build_services(get_settings(), sql_unit_of_work_factory(AsyncSessionLocal))


Services = Annotated[NovaServices, Depends(get_services)]


async def get_uow(services: Services) -> AsyncIterator[UnitOfWork]:
    """Request-scoped unit of work. Not used by the streaming body, which opens its own."""
    async with services.uow_factory() as uow:
        yield uow


def get_orchestrator(services: Services) -> ChatOrchestrator:
    return services.orchestrator


def get_consolidation_engine(services: Services) -> MemoryConsolidationEngine:
    return services.consolidation


Uow = Annotated[UnitOfWork, Depends(get_uow)]
Orchestrator = Annotated[ChatOrchestrator, Depends(get_orchestrator)]
ConsolidationEngine = Annotated[MemoryConsolidationEngine, Depends(get_consolidation_engine)]


def get_content_cache(services: Services) -> ContentEmbeddingCache:
    return services.content_cache


ContentCache = Annotated[ContentEmbeddingCache, Depends(get_content_cache)]
