"""
Stream events sent to the client during a chat turn.

A turn yields one ``start``, zero or more ``content`` fragments and then
exactly one of ``done`` or ``error``. Each event is one SSE ``data:`` line
of camelCase JSON, decoded on the other side through the ``type``
discriminator.
"""

from datetime import datetime
from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import Field, TypeAdapter

from nova.schemas.base import BaseSchema


class StartEvent(BaseSchema):
    type: Literal["start"] = "start"
    session_id: UUID
    is_new_session: bool


class ContentEvent(BaseSchema):
    type: Literal["content"] = "content"
    content: str


class DoneEvent(BaseSchema):
    type: Literal["done"] = "done"
    message_id: UUID
    created_at: datetime


class ErrorEvent(BaseSchema):
    type: Literal["error"] = "error"
    message: str
    kind: str | None = None


StreamEvent = Annotated[
    Union[StartEvent, ContentEvent, DoneEvent, ErrorEvent],
    Field(discriminator="type"),
]

_stream_event_adapter: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)


def encode_event(event: StartEvent | ContentEvent | DoneEvent | ErrorEvent) -> str:
    return event.model_dump_json(by_alias=True, exclude_none=True)


def decode_event(data: str | bytes) -> StartEvent | ContentEvent | DoneEvent | ErrorEvent:
    """Parse one event payload. Raises pydantic.ValidationError on unknown or malformed events."""
    return _stream_event_adapter.validate_json(data)
