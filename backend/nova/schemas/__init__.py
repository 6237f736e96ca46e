"""Pydantic schemas for API request/response validation."""

from nova.schemas.chat import (
    ChatStreamRequest,
    HealthResponse,
    MessageResponse,
    SessionDetailResponse,
    SessionListResponse,
    SessionSummaryResponse,
)
from nova.schemas.content import ContentRefreshResponse
from nova.schemas.events import (
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    StartEvent,
    StreamEvent,
    decode_event,
    encode_event,
)
from nova.schemas.memory import (
    ConsolidationResponse,
    MemoryListResponse,
    MemoryResponse,
    ProfileConsolidationResponse,
)

__all__ = [
    # Chat
    "ChatStreamRequest",
    "HealthResponse",
    "MessageResponse",
    "SessionDetailResponse",
    "SessionListResponse",
    "SessionSummaryResponse",
    # Content
    "ContentRefreshResponse",
    # Stream events
    "ContentEvent",
    "DoneEvent",
    "ErrorEvent",
    "StartEvent",
    "StreamEvent",
    "decode_event",
    "encode_event",
    # Memory
    "ConsolidationResponse",
    "MemoryListResponse",
    "MemoryResponse",
    "ProfileConsolidationResponse",
]
