"""
Streaming chat orchestration.

One call to ``stream_turn`` handles one user turn end to end: resolve (or
create) the session, persist the user message, assemble context, forward
model fragments as they arrive, persist the assistant message, and signal
memory consolidation. Everything is reported as a sequence of stream events.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol
from uuid import UUID

from nova.config import Settings, get_settings, sanitize_error
from nova.domain import (
    ContentSource,
    ConversationSession,
    LearnerProfile,
    Memory,
    Message,
    MessageRole,
    generate_title,
    utcnow,
)
from nova.errors import (
    AccessDeniedError,
    GenerationError,
    NotFoundError,
    NovaError,
    PersistenceError,
    UpstreamTimeoutError,
)
from nova.repositories.base import UnitOfWork
from nova.schemas.events import ContentEvent, DoneEvent, ErrorEvent, StartEvent, StreamEvent
from nova.services.llm import LlmChunk, LlmService, ToolExecutor
from nova.services.prompts import build_system_prompt
from nova.services.recall import MemoryRecall
from nova.services.retrieval import RetrievalEngine, format_results, merge_ranked

logger = logging.getLogger(__name__)

# User-facing messages for terminal error events
_ERROR_MESSAGES = {
    NotFoundError: "Conversation not found",
    AccessDeniedError: "Access denied",
}
_GENERATION_FAILED = "Failed to generate a response. Please try again."
_GENERATION_TIMED_OUT = "The response took too long. Please try again."
_PERSISTENCE_FAILED = "Failed to save the response. Please try again."


class ConsolidationSignal(Protocol):
    def enqueue(self, session_id: UUID) -> bool: ...


@dataclass(frozen=True)
class _Turn:
    session: ConversationSession
    is_new_session: bool
    history: list[Message]
    user_message: Message


def build_llm_messages(history: Sequence[Message], user_message: str) -> list[dict[str, Any]]:
    """Prior user/assistant messages plus the new one, starting with a user message."""
    messages = [
        {"role": m.role.value, "content": m.content}
        for m in history
        if m.role in (MessageRole.USER, MessageRole.ASSISTANT)
    ]
    while messages and messages[0]["role"] != MessageRole.USER.value:
        messages.pop(0)
    messages.append({"role": MessageRole.USER.value, "content": user_message})
    return messages


class ChatOrchestrator:
    """Drives one streamed chat turn per ``stream_turn`` call."""

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        llm: LlmService,
        recall: MemoryRecall,
        retrieval: RetrievalEngine | None = None,
        tools: ToolExecutor | None = None,
        consolidation: ConsolidationSignal | None = None,
        settings: Settings | None = None,
    ):
        self.uow_factory = uow_factory
        self.llm = llm
        self.recall = recall
        self.retrieval = retrieval
        self.tools = tools
        self.consolidation = consolidation
        self.settings = settings or get_settings()
        self.context_sources = [ContentSource(value) for value in self.settings.context_sources]

    async def stream_turn(
        self,
        profile_id: UUID,
        session_id: UUID | None,
        message: str,
    ) -> AsyncIterator[StreamEvent]:
        """
        Run one turn and yield its events.

        Yields ``start``, then ``content`` fragments, then ``done``; or a
        single ``error`` if the session cannot be resolved; or ``start``,
        some ``content`` and a final ``error`` if generation or the final
        write fails. No assistant message is stored unless ``done`` is sent.
        Cancelling the consumer stops the turn without storing anything.
        """
        try:
            turn = await self._begin_turn(profile_id, session_id, message)
        except (NotFoundError, AccessDeniedError) as e:
            logger.info("Rejected chat turn for profile_id=%s: %s", profile_id, e)
            yield ErrorEvent(message=_ERROR_MESSAGES[type(e)], kind=e.kind)
            return
        except PersistenceError as e:
            yield ErrorEvent(message=sanitize_error(e, generic_message=_PERSISTENCE_FAILED), kind=e.kind)
            return

        session_id = turn.session.id
        yield StartEvent(session_id=session_id, is_new_session=turn.is_new_session)

        system_prompt = await self._build_system_prompt(profile_id, message)
        llm_messages = build_llm_messages(turn.history, message)
        tools = self.tools if self.settings.llm_enable_tools else None

        parts: list[str] = []
        final: LlmChunk | None = None
        stream = self.llm.stream_chat(system_prompt, llm_messages, tools=tools)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.generation_timeout_seconds
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError
                chunk = await asyncio.wait_for(anext(stream, None), remaining)
                if chunk is None:
                    break
                if chunk.is_complete:
                    final = chunk
                elif chunk.text:
                    parts.append(chunk.text)
                    yield ContentEvent(content=chunk.text)
            if not parts:
                raise GenerationError("The language model returned an empty response")

        except asyncio.TimeoutError:
            logger.warning("Generation timed out for session_id=%s", session_id)
            yield ErrorEvent(message=_GENERATION_TIMED_OUT, kind=UpstreamTimeoutError.kind)
            return
        except asyncio.CancelledError:
            logger.info("Chat turn cancelled for session_id=%s; nothing persisted", session_id)
            raise
        except Exception as e:
            logger.exception("Generation failed for session_id=%s", session_id)
            kind = e.kind if isinstance(e, NovaError) else GenerationError.kind
            yield ErrorEvent(message=sanitize_error(e, generic_message=_GENERATION_FAILED), kind=kind)
            return
        finally:
            await stream.aclose()

        try:
            saved = await self._finish_turn(session_id, "".join(parts), final)
        except PersistenceError as e:
            yield ErrorEvent(message=sanitize_error(e, generic_message=_PERSISTENCE_FAILED), kind=e.kind)
            return

        self._signal_consolidation(session_id)
        yield DoneEvent(message_id=saved.id, created_at=saved.created_at)

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    async def _begin_turn(self, profile_id: UUID, session_id: UUID | None, message: str) -> _Turn:
        """Resolve the session and store the user message in one transaction."""
        try:
            async with self.uow_factory() as uow:
                if session_id is None:
                    session = ConversationSession.create(profile_id)
                    await uow.conversations.add_session(session)
                    is_new = True
                else:
                    session = await uow.conversations.find_session(session_id)
                    if session is None or session.is_deleted:
                        raise NotFoundError("Session", session_id)
                    if not session.is_owned_by(profile_id):
                        raise AccessDeniedError("Session", session_id, profile_id)
                    is_new = False

                history = await uow.conversations.list_messages(
                    session.id, limit=self.settings.max_context_messages
                )
                user_message = await uow.conversations.add_message(Message.user(session.id, message))

                session = session.touch(user_message.created_at)
                if session.title is None:
                    session = session.with_title(generate_title(message))
                await uow.conversations.update_session(session)
                await uow.commit()

        except NovaError:
            raise
        except Exception as e:
            logger.exception("Failed to start chat turn for profile_id=%s", profile_id)
            raise PersistenceError("Failed to save the message") from e

        return _Turn(session=session, is_new_session=is_new, history=history, user_message=user_message)

    async def _finish_turn(self, session_id: UUID, content: str, final: LlmChunk | None) -> Message:
        """Store the assistant message and bump the session in one transaction."""
        tokens_used = None
        model_used = None
        if final is not None:
            tokens_used = final.input_tokens + final.output_tokens
            model_used = final.model

        try:
            async with self.uow_factory() as uow:
                saved = await uow.conversations.add_message(
                    Message.assistant(session_id, content, tokens_used=tokens_used, model_used=model_used, now=utcnow())
                )
                session = await uow.conversations.find_session(session_id)
                if session is None:
                    raise NotFoundError("Session", session_id)
                await uow.conversations.update_session(session.touch(saved.created_at))
                await uow.commit()
        except Exception as e:
            logger.exception("Failed to persist assistant message for session_id=%s", session_id)
            raise PersistenceError("Failed to save the response") from e

        return saved

    def _signal_consolidation(self, session_id: UUID) -> None:
        if self.consolidation is None or not self.settings.memory_consolidation_enabled:
            return
        try:
            self.consolidation.enqueue(session_id)
        except Exception:
            logger.exception("Failed to queue consolidation for session_id=%s", session_id)

    # =========================================================================
    # CONTEXT
    # =========================================================================

    async def _build_system_prompt(self, profile_id: UUID, message: str) -> str:
        query_embedding = await self.recall.embed_query(message)
        (learner, memories), knowledge = await asyncio.gather(
            self._load_personalization(profile_id, query_embedding),
            self._retrieve_knowledge(message, query_embedding),
        )
        return build_system_prompt(learner, memories, knowledge)

    async def _load_personalization(
        self, profile_id: UUID, query_embedding: list[float] | None
    ) -> tuple[LearnerProfile | None, list[Memory]]:
        try:
            async with self.uow_factory() as uow:
                learner = await uow.learners.find_by_profile_id(profile_id)
                memories = await self.recall.recall(uow.memories, profile_id, query_embedding)
        except Exception:
            logger.exception("Failed to load learner context for profile_id=%s", profile_id)
            return None, []
        return learner, memories

    async def _retrieve_knowledge(self, message: str, query_embedding: list[float] | None) -> str | None:
        if self.retrieval is None or not self.context_sources or query_embedding is None:
            return None
        try:
            context = await self.retrieval.gather_context(
                message, self.context_sources, query_embedding=query_embedding
            )
        except Exception:
            logger.exception("Context retrieval failed")
            return None

        results = merge_ranked(context)
        if not results:
            return None
        return format_results(
            results,
            max_tokens=self.settings.retrieval_max_tokens,
            chars_per_token=self.settings.retrieval_chars_per_token,
        )
