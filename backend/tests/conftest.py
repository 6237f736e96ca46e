"""Pytest configuration and fixtures."""

import os

# Required settings must exist before the app module is imported
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key")
os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ.setdefault("ENVIRONMENT", "development")

from collections.abc import AsyncGenerator
from uuid import UUID, uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from fakes import JWT_SECRET, FakeEmbedder, FakeExtractor, FakeLlm, InMemoryStore, make_token
from nova.api.deps import NovaServices, build_services, get_services
from nova.config import Settings
from nova.main import app
from nova.services.content_cache import ContentEmbeddingCache


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """sse-starlette keeps a module-level exit event bound to the first event loop."""
    from sse_starlette import sse

    app_status = getattr(sse, "AppStatus", None)
    if app_status is not None and hasattr(app_status, "should_exit_event"):
        app_status.should_exit_event = None
    yield
    if app_status is not None and hasattr(app_status, "should_exit_event"):
        app_status.should_exit_event = None


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        jwt_secret_key=JWT_SECRET,
        anthropic_api_key="test-anthropic-key",
        openai_api_key="test-openai-key",
        generation_timeout_seconds=2.0,
        retrieval_timeout_seconds=1.0,
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def llm() -> FakeLlm:
    return FakeLlm()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def services(settings, store, llm, embedder, extractor) -> NovaServices:
    return build_services(
        settings,
        store.unit_of_work,
        llm=llm,
        embedder=embedder,
        extractor=extractor,
        content_cache=ContentEmbeddingCache(store.unit_of_work),
    )


@pytest.fixture
def profile_id() -> UUID:
    return uuid4()


@pytest.fixture
def auth_headers(profile_id) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(profile_id)}"}


@pytest.fixture
async def client(services) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI endpoints."""
    app.dependency_overrides[get_services] = lambda: services
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
