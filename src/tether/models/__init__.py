"""Tether data models."""

from tether.models.config import (
    DEFAULT_AGENT,
    DEFAULT_RETENTION_CONFIG,
    ExecutionConfig,
    ModelRef,
    PollConfig,
    RetentionConfig,
    RetryConfig,
    ServerConfig,
    TetherConfig,
)
from tether.models.events import (
    BusyStatus,
    IdleStatus,
    MessageUpdatedEvent,
    PartUpdatedEvent,
    ProgressEvent,
    RetryStatus,
    SessionErrorEvent,
    SessionIdleEvent,
    TurnStatus,
    parse_event,
    parse_status,
)
from tether.models.records import (
    AssistantMessage,
    Message,
    MessageWithParts,
    Part,
    ProjectInfo,
    PruneResult,
    ReasoningPart,
    SessionDetail,
    SessionInfo,
    SessionMatch,
    SessionSearchResult,
    SessionSummary,
    StepFinishPart,
    TextPart,
    TodoItem,
    TokenUsage,
    ToolPart,
    ToolState,
    ToolStateCompleted,
    ToolStateError,
    ToolStatePending,
    ToolStateRunning,
    UserMessage,
    parse_message,
    parse_part,
)
from tether.models.results import (
    ActivityTracker,
    AgentResult,
    EventStreamResult,
    PollOutcome,
    PollResult,
    PromptAttemptResult,
)

__all__ = [
    # Config
    "DEFAULT_AGENT",
    "DEFAULT_RETENTION_CONFIG",
    "ExecutionConfig",
    "ModelRef",
    "PollConfig",
    "RetentionConfig",
    "RetryConfig",
    "ServerConfig",
    "TetherConfig",
    # Records
    "ProjectInfo",
    "SessionInfo",
    "UserMessage",
    "AssistantMessage",
    "Message",
    "MessageWithParts",
    "TextPart",
    "ReasoningPart",
    "ToolPart",
    "ToolState",
    "ToolStatePending",
    "ToolStateRunning",
    "ToolStateCompleted",
    "ToolStateError",
    "StepFinishPart",
    "Part",
    "TodoItem",
    "TokenUsage",
    "parse_message",
    "parse_part",
    # Directory / retention results
    "SessionSummary",
    "SessionMatch",
    "SessionSearchResult",
    "SessionDetail",
    "PruneResult",
    # Events and status
    "PartUpdatedEvent",
    "MessageUpdatedEvent",
    "SessionErrorEvent",
    "SessionIdleEvent",
    "ProgressEvent",
    "IdleStatus",
    "BusyStatus",
    "RetryStatus",
    "TurnStatus",
    "parse_event",
    "parse_status",
    # Turn results
    "ActivityTracker",
    "EventStreamResult",
    "PollOutcome",
    "PollResult",
    "PromptAttemptResult",
    "AgentResult",
]
