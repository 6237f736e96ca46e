"""API routes package."""

from nova.api.routes import chat, content, memories

__all__ = [
    "chat",
    "content",
    "memories",
]
