"""Client-side helpers for calling the Nova API."""

from nova.client.stream_client import NovaStreamClient, TurnResult, group_sessions_by_recency, iter_sse_events
from nova.client.tokens import (
    AuthenticationError,
    NovaClientError,
    TokenPair,
    TokenProvider,
    http_refresher,
    token_expires_within,
)

__all__ = [
    "AuthenticationError",
    "NovaClientError",
    "NovaStreamClient",
    "TokenPair",
    "TokenProvider",
    "TurnResult",
    "group_sessions_by_recency",
    "http_refresher",
    "iter_sse_events",
    "token_expires_within",
]
