"""Tests for record, event and status models."""

from __future__ import annotations

from tether.models.events import (
    BusyStatus,
    IdleStatus,
    MessageUpdatedEvent,
    PartUpdatedEvent,
    RetryStatus,
    SessionErrorEvent,
    SessionIdleEvent,
    parse_event,
    parse_status,
)
from tether.models.records import (
    AssistantMessage,
    ReasoningPart,
    SessionInfo,
    StepFinishPart,
    TextPart,
    TodoItem,
    TokenUsage,
    ToolPart,
    ToolStateCompleted,
    ToolStatePending,
    UserMessage,
    parse_message,
    parse_part,
)
from tests.conftest import bash_event, error_event, idle_event, text_event, tokens_event


class TestSessionInfo:
    def test_camel_case_fields(self):
        """Wire camelCase keys populate snake_case attributes."""
        session = SessionInfo.model_validate(
            {"id": "ses_1", "projectID": "prj_1", "parentID": "ses_0", "time": {"created": 1, "updated": 2}}
        )
        assert session.project_id == "prj_1"
        assert session.parent_id == "ses_0"
        assert session.is_child
        assert session.time.updated == 2

    def test_root_session_is_not_child(self):
        """A session without a parent is a main session."""
        assert not SessionInfo(id="ses_1").is_child

    def test_unknown_keys_ignored(self):
        """Fields the service adds later do not break validation."""
        session = SessionInfo.model_validate({"id": "ses_1", "share": {"url": "x"}, "revert": None})
        assert session.id == "ses_1"


class TestMessages:
    def test_discriminates_on_role(self):
        """parse_message picks the model by role."""
        user = parse_message({"id": "msg_1", "role": "user", "agent": "build"})
        assistant = parse_message({"id": "msg_2", "role": "assistant", "modelID": "m", "cost": 0.5})
        assert isinstance(user, UserMessage)
        assert isinstance(assistant, AssistantMessage)
        assert assistant.model_id == "m"

    def test_invalid_message_returns_none(self):
        """Unknown roles and non-dicts are rejected quietly."""
        assert parse_message({"id": "msg_1", "role": "system"}) is None
        assert parse_message(None) is None
        assert parse_message("nope") is None

    def test_token_total(self):
        """total() sums every counter including cache."""
        usage = TokenUsage.model_validate(
            {"input": 10, "output": 5, "reasoning": 2, "cache": {"read": 3, "write": 4}}
        )
        assert usage.total() == 24


class TestParts:
    def test_text_part(self):
        """Text parts parse with their timing."""
        part = parse_part({"id": "prt_1", "type": "text", "text": "hello", "time": {"start": 1, "end": 2}})
        assert isinstance(part, TextPart)
        assert part.time is not None and part.time.end == 2

    def test_tool_part_states(self):
        """Tool state is discriminated on status."""
        completed = parse_part(
            {
                "id": "prt_1",
                "type": "tool",
                "tool": "bash",
                "state": {"status": "completed", "input": {"command": "ls"}, "output": "a\nb", "title": "ls"},
            }
        )
        pending = parse_part({"id": "prt_2", "type": "tool", "tool": "bash", "state": {"status": "pending"}})
        assert isinstance(completed, ToolPart)
        assert isinstance(completed.state, ToolStateCompleted)
        assert completed.state.output == "a\nb"
        assert isinstance(pending, ToolPart)
        assert isinstance(pending.state, ToolStatePending)

    def test_reasoning_and_step_finish(self):
        """Reasoning and step-finish parts parse into their models."""
        assert isinstance(parse_part({"id": "p", "type": "reasoning", "text": "hmm"}), ReasoningPart)
        assert isinstance(parse_part({"id": "p", "type": "step-finish", "reason": "stop"}), StepFinishPart)

    def test_unmodelled_part_types_are_skipped(self):
        """Part kinds outside the union return None."""
        assert parse_part({"id": "p", "type": "step-start"}) is None
        assert parse_part({"id": "p", "type": "patch", "files": []}) is None


class TestTodoItem:
    def test_unknown_values_normalised(self):
        """Bad status/priority fall back to pending/medium."""
        item = TodoItem.model_validate({"content": "x", "status": "blocked", "priority": "urgent"})
        assert item.status == "pending"
        assert item.priority == "medium"

    def test_known_values_kept(self):
        """Recognised todo status and priority are kept as given."""
        item = TodoItem.model_validate({"content": "x", "status": "completed", "priority": "high"})
        assert item.status == "completed"
        assert item.priority == "high"


class TestEvents:
    def test_known_event_types(self):
        """Each consumed event type parses into its model."""
        assert isinstance(parse_event(text_event("ses_1", "hi")), PartUpdatedEvent)
        assert isinstance(parse_event(bash_event("ses_1", "ls", "")), PartUpdatedEvent)
        assert isinstance(parse_event(tokens_event("ses_1", 3)), MessageUpdatedEvent)
        assert isinstance(parse_event(error_event("ses_1", "boom")), SessionErrorEvent)
        assert isinstance(parse_event(idle_event("ses_1")), SessionIdleEvent)

    def test_unconsumed_event_types_return_none(self):
        """Event types the runner does not consume are dropped."""
        assert parse_event({"type": "session.updated", "properties": {}}) is None
        assert parse_event({"type": "server.connected", "properties": {}}) is None
        assert parse_event(["not", "a", "dict"]) is None

    def test_malformed_known_event_returns_none(self):
        """A known type with an invalid payload is dropped."""
        assert parse_event({"type": "session.idle", "properties": {}}) is None

    def test_session_error_carries_raw_error(self):
        """session.error keeps the raw error payload for classification."""
        event = parse_event(error_event("ses_1", "fetch failed"))
        assert isinstance(event, SessionErrorEvent)
        assert event.properties.session_id == "ses_1"
        assert event.properties.error["data"]["message"] == "fetch failed"


class TestStatus:
    def test_status_variants(self):
        """Idle, busy and retry statuses parse into their models."""
        assert isinstance(parse_status({"type": "idle"}), IdleStatus)
        assert isinstance(parse_status({"type": "busy"}), BusyStatus)
        retry = parse_status({"type": "retry", "attempt": 2, "message": "overloaded", "next": 5})
        assert isinstance(retry, RetryStatus)
        assert retry.attempt == 2
        assert retry.message == "overloaded"

    def test_unknown_status_returns_none(self):
        """Missing or unknown statuses return None."""
        assert parse_status(None) is None
        assert parse_status({"type": "sleeping"}) is None
