"""LLM-backed extraction of candidate memories from a transcript slice."""

import json
import logging
from collections.abc import Sequence
from typing import Any, Protocol

from nova.config import Settings, get_settings
from nova.domain import MemoryCandidate, MemoryCategory, Message, MessageRole
from nova.domain.memory import DEFAULT_IMPORTANCE
from nova.errors import ExtractionError, NovaError
from nova.services.llm import LlmService

logger = logging.getLogger(__name__)

EXTRACTION_SYSTEM_PROMPT = (
    "You are a memory extraction assistant. Extract key memories from "
    "conversations and return them as JSON. Be concise and specific."
)

# JSON list fields and the category each maps to
_LIST_FIELDS: dict[str, MemoryCategory] = {
    "topics_discussed": MemoryCategory.TOPIC_DISCUSSED,
    "concepts_explained": MemoryCategory.CONCEPT_EXPLAINED,
    "struggles_identified": MemoryCategory.STRUGGLE_IDENTIFIED,
    "strengths_demonstrated": MemoryCategory.STRENGTH_DEMONSTRATED,
    "questions_asked": MemoryCategory.QUESTION_ASKED,
}

# JSON string-or-null fields for single-slot categories
_SINGLE_FIELDS: dict[str, MemoryCategory] = {
    "current_focus": MemoryCategory.CURRENT_FOCUS,
    "preferred_examples": MemoryCategory.PREFERRED_EXAMPLES,
}

# Current focus is always worth remembering
_MIN_FOCUS_IMPORTANCE = 4


class FactExtractor(Protocol):
    async def extract(self, messages: Sequence[Message]) -> list[MemoryCandidate]: ...


def build_transcript(messages: Sequence[Message]) -> str:
    lines = []
    for message in messages:
        if message.role == MessageRole.SYSTEM:
            continue
        speaker = "User" if message.role == MessageRole.USER else "Nova"
        lines.append(f"{speaker}: {message.content}")
        lines.append("")
    return "\n".join(lines)


def build_extraction_prompt(transcript: str) -> str:
    return f"""Analyze this conversation between a learner and an AI coach named Nova.
Extract key memories about the learner that would be useful for future conversations.

Conversation:
{transcript}

Return a JSON object with these fields (all arrays can be empty):
{{
  "topics_discussed": ["topic1", "topic2"],
  "concepts_explained": ["concept1", "concept2"],
  "struggles_identified": ["struggle1"],
  "strengths_demonstrated": ["strength1"],
  "questions_asked": ["question1"],
  "current_focus": "what they're working on" or null,
  "preferred_examples": "the kind of examples that work for them" or null,
  "importance_notes": {{
    "topic1": 4,
    "struggle1": 5
  }}
}}

Guidelines:
- Be specific and concise (each item should be 1-2 sentences max)
- Only include things actually discussed, don't infer
- Rate importance 1-5 (5 = critical to remember)
- current_focus should capture their main project/learning goal if mentioned
- Return ONLY valid JSON, no markdown code blocks"""


def _strip_code_fence(content: str) -> str:
    text = content.strip()
    if not text.startswith("```"):
        return text
    lines = text.split("\n")[1:]
    if lines and lines[-1].strip() == "```":
        lines = lines[:-1]
    return "\n".join(lines)


def _importance(notes: Any, text: str) -> int:
    if isinstance(notes, dict):
        value = notes.get(text)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return int(value)
    return DEFAULT_IMPORTANCE


def parse_extraction_response(content: str) -> list[MemoryCandidate]:
    """
    Turn the model's JSON reply into candidates.

    Markdown code fences are tolerated, unknown keys ignored, blank items
    skipped and importance clamped to 1..5.

    Raises:
        ExtractionError: The reply is not a JSON object.
    """
    try:
        root = json.loads(_strip_code_fence(content))
    except json.JSONDecodeError as e:
        raise ExtractionError(f"Extraction reply is not valid JSON: {e}") from e
    if not isinstance(root, dict):
        raise ExtractionError("Extraction reply is not a JSON object")

    notes = root.get("importance_notes")
    candidates = []

    for field, category in _LIST_FIELDS.items():
        items = root.get(field)
        if not isinstance(items, list):
            continue
        for item in items:
            if not isinstance(item, str) or not item.strip():
                continue
            candidates.append(MemoryCandidate.create(category, item, _importance(notes, item)))

    for field, category in _SINGLE_FIELDS.items():
        value = root.get(field)
        if not isinstance(value, str) or not value.strip():
            continue
        importance = _importance(notes, value)
        if category == MemoryCategory.CURRENT_FOCUS:
            importance = max(importance, _MIN_FOCUS_IMPORTANCE)
        candidates.append(MemoryCandidate.create(category, value, importance))

    return candidates


class LlmFactExtractor:
    """Asks the LLM for a JSON summary of what to remember."""

    def __init__(self, llm: LlmService, settings: Settings | None = None):
        self.llm = llm
        self.settings = settings or get_settings()

    async def extract(self, messages: Sequence[Message]) -> list[MemoryCandidate]:
        """
        Extract candidate memories from a transcript slice.

        Raises:
            ExtractionError: The model call failed or its reply could not be parsed.
        """
        transcript = build_transcript(messages)
        if not transcript.strip():
            return []

        try:
            response = await self.llm.complete(
                EXTRACTION_SYSTEM_PROMPT,
                [{"role": "user", "content": build_extraction_prompt(transcript)}],
                max_tokens=self.settings.llm_extraction_max_tokens,
            )
        except NovaError as e:
            raise ExtractionError("Memory extraction model call failed") from e

        candidates = parse_extraction_response(response.content)
        logger.debug("Extracted %d memory candidates from %d messages", len(candidates), len(messages))
        return candidates
