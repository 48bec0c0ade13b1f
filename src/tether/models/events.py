"""Progress events and turn status as delivered by the agent service."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import AliasChoices, BaseModel, Field, TypeAdapter, ValidationError

from tether.models.records import (
    AssistantMessage,
    Part,
    Record,
    UserMessage,
)

# ── Progress events ────────────────────────────────────────────────────────────


class PartUpdatedProperties(Record):
    part: Part


class PartUpdatedEvent(BaseModel):
    """A message part was created or changed (text streamed, tool state advanced)."""

    type: Literal["message.part.updated"] = "message.part.updated"
    properties: PartUpdatedProperties


class MessageUpdatedProperties(Record):
    info: Annotated[UserMessage | AssistantMessage, Field(discriminator="role")]


class MessageUpdatedEvent(BaseModel):
    """Message metadata changed; assistant messages carry running token/cost totals."""

    type: Literal["message.updated"] = "message.updated"
    properties: MessageUpdatedProperties


class SessionErrorProperties(Record):
    session_id: str | None = Field(
        default=None, validation_alias=AliasChoices("sessionID", "sessionId", "session_id")
    )
    error: Any = None


class SessionErrorEvent(BaseModel):
    type: Literal["session.error"] = "session.error"
    properties: SessionErrorProperties


class SessionIdleProperties(Record):
    session_id: str = Field(validation_alias=AliasChoices("sessionID", "sessionId", "session_id"))


class SessionIdleEvent(BaseModel):
    type: Literal["session.idle"] = "session.idle"
    properties: SessionIdleProperties


ProgressEvent = Annotated[
    PartUpdatedEvent | MessageUpdatedEvent | SessionErrorEvent | SessionIdleEvent,
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter[ProgressEvent] = TypeAdapter(ProgressEvent)
_KNOWN_EVENT_TYPES = frozenset(
    {"message.part.updated", "message.updated", "session.error", "session.idle"}
)


def parse_event(
    data: Any,
) -> PartUpdatedEvent | MessageUpdatedEvent | SessionErrorEvent | SessionIdleEvent | None:
    """
    Validate one raw event from the stream.

    The service publishes many more event types than the processor consumes
    (``session.updated``, ``file.edited``, ``server.connected``, ...). Those,
    and payloads that fail validation, return None.
    """
    if not isinstance(data, dict) or data.get("type") not in _KNOWN_EVENT_TYPES:
        return None
    try:
        return _EVENT_ADAPTER.validate_python(data)
    except ValidationError:
        return None


# ── Turn status ────────────────────────────────────────────────────────────────


class IdleStatus(BaseModel):
    type: Literal["idle"] = "idle"


class BusyStatus(BaseModel):
    type: Literal["busy"] = "busy"


class RetryStatus(BaseModel):
    """The service is retrying an upstream model call on its own."""

    type: Literal["retry"] = "retry"
    attempt: int = 0
    message: str = ""
    next: int | None = None


TurnStatus = Annotated[IdleStatus | BusyStatus | RetryStatus, Field(discriminator="type")]

_STATUS_ADAPTER: TypeAdapter[TurnStatus] = TypeAdapter(TurnStatus)


def parse_status(data: Any) -> IdleStatus | BusyStatus | RetryStatus | None:
    """Validate one entry of the status map. Unknown shapes return None."""
    try:
        return _STATUS_ADAPTER.validate_python(data)
    except ValidationError:
        return None
