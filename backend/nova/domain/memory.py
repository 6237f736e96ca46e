"""Learner memories extracted from conversations."""

import re
from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID, uuid4

from pydantic import Field

from nova.domain.base import DomainModel, utcnow

MAX_MEMORY_LENGTH = 1000
MIN_IMPORTANCE = 1
MAX_IMPORTANCE = 5
DEFAULT_IMPORTANCE = 3

_WHITESPACE = re.compile(r"\s+")
_TRAILING_PUNCTUATION = ".!?;:,"


class MemoryCategory(str, PyEnum):
    """Fixed tags classifying an extracted fact."""

    TOPIC_DISCUSSED = "TopicDiscussed"
    CONCEPT_EXPLAINED = "ConceptExplained"
    STRUGGLE_IDENTIFIED = "StruggleIdentified"
    STRENGTH_DEMONSTRATED = "StrengthDemonstrated"
    QUESTION_ASKED = "QuestionAsked"
    CURRENT_FOCUS = "CurrentFocus"
    PREFERRED_EXAMPLES = "PreferredExamples"

    @property
    def is_single_slot(self) -> bool:
        """Single-slot categories keep one active fact; a new one supersedes it."""
        return self in SINGLE_SLOT_CATEGORIES


SINGLE_SLOT_CATEGORIES = frozenset({MemoryCategory.CURRENT_FOCUS, MemoryCategory.PREFERRED_EXAMPLES})


def clamp_importance(value: int) -> int:
    return max(MIN_IMPORTANCE, min(MAX_IMPORTANCE, value))


def normalize_content(content: str) -> str:
    """Canonical form used for duplicate detection: casefolded, single-spaced, no trailing punctuation."""
    text = _WHITESPACE.sub(" ", content).strip().casefold()
    return text.rstrip(_TRAILING_PUNCTUATION).rstrip()


class MemoryCandidate(DomainModel):
    """A fact proposed by the extractor, not yet merged."""

    category: MemoryCategory
    content: str = Field(min_length=1, max_length=MAX_MEMORY_LENGTH)
    importance: int = Field(default=DEFAULT_IMPORTANCE, ge=MIN_IMPORTANCE, le=MAX_IMPORTANCE)

    @classmethod
    def create(cls, category: MemoryCategory, content: str, importance: int = DEFAULT_IMPORTANCE) -> "MemoryCandidate":
        return cls(
            category=category,
            content=content.strip()[:MAX_MEMORY_LENGTH],
            importance=clamp_importance(importance),
        )


class Memory(DomainModel):
    """
    A profile-scoped fact.

    Active while ``superseded_at`` is unset. ``superseded_by_id`` always
    points at a strictly newer memory of the same profile and category.
    """

    id: UUID
    profile_id: UUID
    source_session_id: UUID
    category: MemoryCategory
    content: str = Field(min_length=1, max_length=MAX_MEMORY_LENGTH)
    embedding: tuple[float, ...] | None = None
    importance: int = Field(default=DEFAULT_IMPORTANCE, ge=MIN_IMPORTANCE, le=MAX_IMPORTANCE)
    occurrence_count: int = Field(default=1, ge=1)
    created_at: datetime
    superseded_at: datetime | None = None
    superseded_by_id: UUID | None = None

    @classmethod
    def create(
        cls,
        profile_id: UUID,
        source_session_id: UUID,
        candidate: MemoryCandidate,
        *,
        embedding: list[float] | None = None,
        now: datetime | None = None,
    ) -> "Memory":
        return cls(
            id=uuid4(),
            profile_id=profile_id,
            source_session_id=source_session_id,
            category=candidate.category,
            content=candidate.content,
            embedding=tuple(embedding) if embedding is not None else None,
            importance=candidate.importance,
            created_at=now or utcnow(),
        )

    @property
    def is_active(self) -> bool:
        return self.superseded_at is None

    def supersede(self, replacement: "Memory", at: datetime | None = None) -> "Memory":
        """Mark this memory inactive and link it to its replacement."""
        check_supersession(self, replacement)
        return self.model_copy(update={"superseded_at": at or utcnow(), "superseded_by_id": replacement.id})

    def reinforce(self, importance: int | None = None) -> "Memory":
        """Count another occurrence, raising importance if the new evidence is stronger."""
        new_importance = self.importance
        if importance is not None and importance > self.importance:
            new_importance = clamp_importance(importance)
        return self.model_copy(
            update={"occurrence_count": self.occurrence_count + 1, "importance": new_importance}
        )


class SupersessionError(ValueError):
    """A supersession link would break the chain invariants."""


def check_supersession(old: Memory, new: Memory) -> None:
    """Validate that ``new`` may replace ``old``."""
    if old.id == new.id:
        raise SupersessionError("A memory cannot supersede itself")
    if old.profile_id != new.profile_id:
        raise SupersessionError("Supersession must stay within one profile")
    if old.category != new.category:
        raise SupersessionError("Supersession must stay within one category")
    if new.created_at < old.created_at:
        raise SupersessionError("A memory can only be superseded by a newer one")


def check_supersession_chain(memories: list[Memory]) -> None:
    """
    Validate every supersession link among ``memories``.

    Links must resolve inside the given set, respect ``check_supersession``
    and never form a cycle. Links pointing outside the set are ignored.
    """
    by_id = {m.id: m for m in memories}
    for memory in memories:
        if memory.superseded_by_id is None:
            continue
        if memory.superseded_at is None:
            raise SupersessionError(f"Memory {memory.id} has a replacement but no superseded_at")
        replacement = by_id.get(memory.superseded_by_id)
        if replacement is not None:
            check_supersession(memory, replacement)

    for memory in memories:
        seen = {memory.id}
        current = memory
        while current.superseded_by_id is not None and current.superseded_by_id in by_id:
            current = by_id[current.superseded_by_id]
            if current.id in seen:
                raise SupersessionError(f"Supersession cycle through memory {memory.id}")
            seen.add(current.id)
