"""Consumes the service's progress events for one attempt."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterable
from typing import Any

import httpx
import structlog

from tether.errors import classify_session_error
from tether.models.events import (
    MessageUpdatedEvent,
    PartUpdatedEvent,
    SessionErrorEvent,
    SessionIdleEvent,
    parse_event,
)
from tether.models.records import (
    AssistantMessage,
    TextPart,
    ToolPart,
    ToolStateCompleted,
)
from tether.models.results import ActivityTracker, EventStreamResult
from tether.output import OutputSink
from tether.runner.artifacts import detect_artifacts

_logger = structlog.get_logger("tether.events")


class _EventState:
    def __init__(self, sink: OutputSink, result: EventStreamResult) -> None:
        self.sink = sink
        self.result = result
        self.last_text = ""

    def flush(self) -> None:
        if self.last_text:
            self.sink.text(self.last_text)
            self.last_text = ""

    def comment_posted(self) -> None:
        self.result.comments_posted += 1


def _event_session_id(
    event: PartUpdatedEvent | MessageUpdatedEvent | SessionErrorEvent | SessionIdleEvent,
) -> str | None:
    if isinstance(event, PartUpdatedEvent):
        return event.properties.part.session_id
    if isinstance(event, MessageUpdatedEvent):
        return event.properties.info.session_id
    return event.properties.session_id


def _handle_part(event: PartUpdatedEvent, state: _EventState) -> None:
    part = event.properties.part
    if isinstance(part, TextPart):
        state.last_text = part.text
        if part.time is not None and part.time.end is not None:
            state.flush()
        return
    if isinstance(part, ToolPart) and isinstance(part.state, ToolStateCompleted):
        tool_state = part.state
        state.sink.tool(part.tool, tool_state.title)
        if part.tool.lower() != "bash":
            return
        command = tool_state.input.get("command") or tool_state.input.get("cmd") or ""
        detect_artifacts(
            str(command),
            tool_state.output,
            state.result.prs_created,
            state.result.commits_created,
            state.comment_posted,
        )


def _handle_message(event: MessageUpdatedEvent, result: EventStreamResult) -> None:
    info = event.properties.info
    if not isinstance(info, AssistantMessage) or info.tokens is None:
        return
    result.tokens = info.tokens.model_copy(deep=True)
    result.model = info.model_id or None
    result.cost = info.cost
    _logger.debug("token_usage_received", tokens=info.tokens.total(), model=result.model, cost=result.cost)


async def process_event_stream(
    stream: AsyncIterable[dict[str, Any]],
    session_id: str,
    cancel: asyncio.Event,
    *,
    sink: OutputSink,
    tracker: ActivityTracker | None = None,
    result: EventStreamResult | None = None,
) -> EventStreamResult:
    """
    Fold the event stream of one attempt into an :class:`EventStreamResult`.

    Stops on ``cancel``, on stream end, on a ``session.error`` for
    ``session_id`` (classified into ``terminal_error``) or on its
    ``session.idle`` (which also sets ``tracker.session_idle``). Events for
    other sessions and unknown event types are ignored.

    Accumulation happens in ``result`` as events arrive, so a caller holding
    that object sees everything processed even if this task is cancelled.
    Stream read failures end processing quietly.

    Args:
        stream: Decoded event payloads.
        session_id: The session whose turn is being tracked.
        cancel: Set by the caller to stop consumption.
        sink: Receives flushed assistant text and finished tool calls.
        tracker: Flags shared with the poller.
        result: Object to accumulate into (a fresh one when omitted).
    """
    result = result if result is not None else EventStreamResult()
    tracker = tracker if tracker is not None else ActivityTracker()
    state = _EventState(sink, result)

    try:
        async for raw in stream:
            if cancel.is_set():
                break
            _logger.debug("server_event", event_type=raw.get("type"))
            event = parse_event(raw)
            if event is None or _event_session_id(event) != session_id:
                continue
            tracker.first_meaningful_event_received = True

            if isinstance(event, PartUpdatedEvent):
                _handle_part(event, state)
            elif isinstance(event, MessageUpdatedEvent):
                _handle_message(event, result)
            elif isinstance(event, SessionErrorEvent):
                error = event.properties.error
                _logger.error("session_error", session_id=session_id, error=error)
                result.terminal_error = classify_session_error(error, result.model)
                break
            elif isinstance(event, SessionIdleEvent):
                tracker.session_idle = True
                break
    except (httpx.HTTPError, httpx.StreamError) as exc:
        if not cancel.is_set():
            _logger.debug("event_stream_error", error=str(exc))
    finally:
        state.flush()

    return result
