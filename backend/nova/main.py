"""
Nova FastAPI Application Entry Point.

Run with: uvicorn nova.main:app --reload
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from nova.api.deps import get_services
from nova.api.routes import chat, content, memories
from nova.config import get_settings
from nova.errors import AccessDeniedError, NotFoundError
from nova.schemas.chat import HealthResponse

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

API_PREFIX = "/api/nova"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup/shutdown."""
    # Startup
    services = app.dependency_overrides.get(get_services, get_services)()
    try:
        await services.content_cache.refresh()
    except Exception:
        # Retrieval retries the load lazily on first search
        logger.exception("Failed to load content embeddings at startup")
    if settings.memory_consolidation_enabled:
        services.worker.start()
    services.cache_refresher.start()

    yield

    # Shutdown
    await services.cache_refresher.stop()
    await services.worker.stop()


app = FastAPI(
    title=settings.app_name,
    description="Learning-coach chat, memory and retrieval API",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": f"{exc.entity} not found"},
    )


@app.exception_handler(AccessDeniedError)
async def access_denied_handler(request: Request, exc: AccessDeniedError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={"detail": "You do not have permission to access this resource"},
    )


# Include routers
app.include_router(chat.router, prefix=API_PREFIX)
app.include_router(memories.router, prefix=API_PREFIX)
app.include_router(content.router, prefix=API_PREFIX)


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    services = app.dependency_overrides.get(get_services, get_services)()
    return HealthResponse(status="healthy", content_chunks=services.content_cache.size)
