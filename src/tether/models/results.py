"""Per-attempt working state and the turn result handed back to the host."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from pydantic import BaseModel, Field

from tether.errors import ErrorInfo
from tether.models.records import TokenUsage


@dataclass
class ActivityTracker:
    """
    Flags shared between the event processor (writer) and the poller (reader).

    Nothing else crosses between the two tasks of an attempt.
    """

    first_meaningful_event_received: bool = False
    session_idle: bool = False


@dataclass
class EventStreamResult:
    """What happened during one attempt, as observed on the event stream."""

    tokens: TokenUsage | None = None
    model: str | None = None
    cost: float | None = None
    prs_created: list[str] = field(default_factory=list)
    commits_created: list[str] = field(default_factory=list)
    comments_posted: int = 0
    terminal_error: ErrorInfo | None = None


class PollOutcome(StrEnum):
    IDLE = "idle"
    TIMEOUT = "timeout"
    ABORTED = "aborted"
    FAILED = "failed"


@dataclass
class PollResult:
    outcome: PollOutcome
    error: str | None = None
    retry_message: str | None = None
    """Last ``retry`` status message when the grace count was exhausted."""

    @property
    def completed(self) -> bool:
        return self.outcome is PollOutcome.IDLE


@dataclass
class PromptAttemptResult:
    """The outcome of one prompt → poll → teardown cycle."""

    success: bool
    error: str | None = None
    llm_error: ErrorInfo | None = None
    should_retry: bool = False
    timed_out: bool = False
    stream_result: EventStreamResult = field(default_factory=EventStreamResult)


class AgentResult(BaseModel):
    """
    Outcome of a whole turn, the only value a host depends on.

    Token, cost and artifact fields reflect the successful attempt only.
    """

    success: bool
    exit_code: int
    duration_ms: int
    session_id: str | None = None
    error: str | None = None
    token_usage: TokenUsage | None = None
    model: str | None = None
    cost: float | None = None
    prs_created: list[str] = Field(default_factory=list)
    commits_created: list[str] = Field(default_factory=list)
    comments_posted: int = 0
    llm_error: ErrorInfo | None = None
