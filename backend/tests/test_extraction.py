"""Tests for parsing the extraction model's reply."""

import json
from uuid import uuid4

import pytest

from fakes import BASE_TIME, FakeLlm
from nova.domain import MemoryCategory, Message, MessageRole
from nova.errors import ExtractionError, GenerationError
from nova.services.extraction import LlmFactExtractor, build_transcript, parse_extraction_response


def _reply(**fields) -> str:
    return json.dumps(fields)


class TestParseExtractionResponse:
    def test_maps_fields_to_categories(self):
        candidates = parse_extraction_response(
            _reply(
                topics_discussed=["Dependency injection"],
                struggles_identified=["Async/await"],
                current_focus="Building a REST API",
                preferred_examples=None,
            )
        )
        by_category = {c.category: c for c in candidates}

        assert by_category[MemoryCategory.TOPIC_DISCUSSED].content == "Dependency injection"
        assert by_category[MemoryCategory.STRUGGLE_IDENTIFIED].content == "Async/await"
        assert by_category[MemoryCategory.CURRENT_FOCUS].content == "Building a REST API"
        assert MemoryCategory.PREFERRED_EXAMPLES not in by_category

    def test_markdown_fence_tolerated(self):
        content = "```json\n" + _reply(questions_asked=["What is a closure?"]) + "\n```"
        [candidate] = parse_extraction_response(content)
        assert candidate.category == MemoryCategory.QUESTION_ASKED

    def test_importance_from_notes_is_clamped(self):
        candidates = parse_extraction_response(
            _reply(
                topics_discussed=["SOLID", "Testing", "Mocks"],
                importance_notes={"SOLID": 9, "Testing": 0},
            )
        )
        importance = {c.content: c.importance for c in candidates}
        assert importance == {"SOLID": 5, "Testing": 1, "Mocks": 3}

    def test_current_focus_is_at_least_four(self):
        [candidate] = parse_extraction_response(_reply(current_focus="Learning Rust", importance_notes={"Learning Rust": 2}))
        assert candidate.importance == 4

    def test_blank_and_non_string_items_skipped(self):
        candidates = parse_extraction_response(_reply(topics_discussed=["", "  ", 42, "Generics"], unknown_field=["x"]))
        assert [c.content for c in candidates] == ["Generics"]

    @pytest.mark.parametrize("content", ["not json at all", "[1, 2, 3]", "```\n{broken\n```"])
    def test_unparseable_reply_raises(self, content):
        with pytest.raises(ExtractionError):
            parse_extraction_response(content)


def _message(role: MessageRole, content: str) -> Message:
    return Message(id=uuid4(), session_id=uuid4(), role=role, content=content, created_at=BASE_TIME, seq=1)


def test_transcript_labels_speakers_and_skips_system_messages():
    transcript = build_transcript(
        [
            _message(MessageRole.SYSTEM, "internal"),
            _message(MessageRole.USER, "What is DI?"),
            _message(MessageRole.ASSISTANT, "A way to pass dependencies in."),
        ]
    )
    assert "internal" not in transcript
    assert "User: What is DI?" in transcript
    assert "Nova: A way to pass dependencies in." in transcript


async def test_extractor_uses_completion(settings):
    llm = FakeLlm(reply=_reply(concepts_explained=["Inversion of control"]))
    extractor = LlmFactExtractor(llm, settings)

    candidates = await extractor.extract([_message(MessageRole.USER, "Explain IoC")])

    assert [c.category for c in candidates] == [MemoryCategory.CONCEPT_EXPLAINED]
    assert llm.complete_calls[0]["max_tokens"] == settings.llm_extraction_max_tokens


async def test_extractor_wraps_model_failure(settings):
    extractor = LlmFactExtractor(FakeLlm(reply=GenerationError("overloaded")), settings)
    with pytest.raises(ExtractionError):
        await extractor.extract([_message(MessageRole.USER, "Explain IoC")])
