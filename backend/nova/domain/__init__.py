"""Immutable domain values for conversations, memories and content."""

from nova.domain.base import utcnow
from nova.domain.content import ContentChunk, ContentSearchResult, ContentSource
from nova.domain.conversation import (
    ConversationSession,
    Message,
    MessageRole,
    SessionSummary,
    generate_title,
)
from nova.domain.learner import LearnerProfile
from nova.domain.memory import (
    Memory,
    MemoryCandidate,
    MemoryCategory,
    SupersessionError,
    check_supersession,
    check_supersession_chain,
    normalize_content,
)

__all__ = [
    "utcnow",
    # Content
    "ContentChunk",
    "ContentSearchResult",
    "ContentSource",
    # Conversations
    "ConversationSession",
    "Message",
    "MessageRole",
    "SessionSummary",
    "generate_title",
    # Learner
    "LearnerProfile",
    # Memory
    "Memory",
    "MemoryCandidate",
    "MemoryCategory",
    "SupersessionError",
    "check_supersession",
    "check_supersession_chain",
    "normalize_content",
]
