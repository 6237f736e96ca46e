"""
Async client for the Nova chat API.

Streams chat turns as typed events and manages bearer tokens through an
injected ``TokenProvider`` (proactive refresh, one retry after a 401).
"""

import logging
from collections import OrderedDict
from collections.abc import AsyncIterable, AsyncIterator, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import httpx

from nova.client.tokens import AuthenticationError, NovaClientError, TokenProvider
from nova.schemas.chat import SessionSummaryResponse
from nova.schemas.events import ContentEvent, DoneEvent, ErrorEvent, StartEvent, StreamEvent, decode_event

logger = logging.getLogger(__name__)

RECENCY_GROUPS = ("Today", "Yesterday", "This Week", "Older")


async def iter_sse_events(lines: AsyncIterable[str]) -> AsyncIterator[StreamEvent]:
    """Decode SSE lines into events. Comment lines (pings) and non-data fields are ignored."""
    data: list[str] = []
    async for line in lines:
        line = line.rstrip("\r")
        if not line:
            if data:
                yield decode_event("\n".join(data))
                data = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field == "data":
            data.append(value[1:] if value.startswith(" ") else value)
    if data:
        yield decode_event("\n".join(data))


@dataclass(frozen=True)
class TurnResult:
    """
    Outcome of one chat turn as seen by the caller.

    ``content`` is only kept for completed turns; partial text from a
    failed turn is discarded.
    """

    session_id: UUID | None
    is_new_session: bool
    content: str
    message_id: UUID | None = None
    created_at: datetime | None = None
    error: str | None = None
    error_kind: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.message_id is not None


class NovaStreamClient:
    def __init__(self, client: httpx.AsyncClient, tokens: TokenProvider, *, base_path: str = "/api/nova"):
        self.client = client
        self.tokens = tokens
        self.base_path = base_path.rstrip("/")

    def _headers(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    async def stream_turn(self, message: str, session_id: UUID | None = None) -> AsyncIterator[StreamEvent]:
        """Send a message and yield the server's events as they arrive."""
        payload: dict[str, Any] = {"message": message}
        if session_id is not None:
            payload["sessionId"] = str(session_id)

        token = await self.tokens.get_access_token()
        for attempt in range(2):
            async with self.client.stream(
                "POST",
                f"{self.base_path}/chat/stream",
                json=payload,
                headers={**self._headers(token), "Accept": "text/event-stream"},
            ) as response:
                if response.status_code == 401 and attempt == 0:
                    await response.aread()
                    token = (await self.tokens.refresh(stale_token=token)).access_token
                    continue
                await _raise_for_status(response)
                async for event in iter_sse_events(response.aiter_lines()):
                    yield event
                return

    async def send(self, message: str, session_id: UUID | None = None) -> TurnResult:
        """Run a whole turn and fold its events into a ``TurnResult``."""
        started: StartEvent | None = None
        parts: list[str] = []
        async for event in self.stream_turn(message, session_id):
            if isinstance(event, StartEvent):
                started = event
            elif isinstance(event, ContentEvent):
                parts.append(event.content)
            elif isinstance(event, DoneEvent):
                return TurnResult(
                    session_id=started.session_id if started else session_id,
                    is_new_session=started.is_new_session if started else False,
                    content="".join(parts),
                    message_id=event.message_id,
                    created_at=event.created_at,
                )
            elif isinstance(event, ErrorEvent):
                return TurnResult(
                    session_id=started.session_id if started else session_id,
                    is_new_session=started.is_new_session if started else False,
                    content="",
                    error=event.message,
                    error_kind=event.kind,
                )
        raise NovaClientError("Stream ended without a done or error event")

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        token = await self.tokens.get_access_token()
        response = await self.client.request(method, f"{self.base_path}{path}", headers=self._headers(token), **kwargs)
        if response.status_code == 401:
            token = (await self.tokens.refresh(stale_token=token)).access_token
            response = await self.client.request(
                method, f"{self.base_path}{path}", headers=self._headers(token), **kwargs
            )
        await _raise_for_status(response)
        return response

    async def list_sessions(self, *, limit: int = 20, cursor: str | None = None) -> dict[str, Any]:
        params: dict[str, Any] = {"limit": limit}
        if cursor:
            params["cursor"] = cursor
        return (await self._request("GET", "/sessions", params=params)).json()

    async def get_session(self, session_id: UUID) -> dict[str, Any]:
        return (await self._request("GET", f"/sessions/{session_id}")).json()

    async def delete_session(self, session_id: UUID) -> None:
        await self._request("DELETE", f"/sessions/{session_id}")


async def _raise_for_status(response: httpx.Response) -> None:
    if response.status_code < 400:
        return
    await response.aread()
    try:
        detail = response.json().get("detail", response.text)
    except ValueError:
        detail = response.text
    error_class = AuthenticationError if response.status_code == 401 else NovaClientError
    raise error_class(str(detail), status_code=response.status_code)


def group_sessions_by_recency(
    sessions: Sequence[SessionSummaryResponse],
    now: datetime | None = None,
) -> OrderedDict[str, list[SessionSummaryResponse]]:
    """
    Bucket sessions into Today / Yesterday / This Week / Older by ``last_message_at``.

    Day boundaries are midnight in ``now``'s timezone (local time by default).
    Empty groups are omitted; input order is kept within a group.
    """
    now = now or datetime.now().astimezone()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    boundaries = (
        ("Today", today),
        ("Yesterday", today - timedelta(days=1)),
        ("This Week", today - timedelta(days=7)),
    )

    groups: OrderedDict[str, list[SessionSummaryResponse]] = OrderedDict((label, []) for label in RECENCY_GROUPS)
    for session in sessions:
        at = session.last_message_at
        if at.tzinfo is not None and now.tzinfo is not None:
            at = at.astimezone(now.tzinfo)
        for label, start in boundaries:
            if at >= start:
                groups[label].append(session)
                break
        else:
            groups["Older"].append(session)

    return OrderedDict((label, items) for label, items in groups.items() if items)
