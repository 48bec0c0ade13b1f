"""Record models for the agent service's persisted history.

These mirror the JSON records the agent service writes (one file per entity in
the local layout, or one object per entity from the HTTP API). Field names are
snake_case in Python and camelCase on the wire; validation accepts both.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)


class Record(BaseModel):
    """Base for wire records: accepts camelCase or snake_case, ignores unknown keys."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ── Project / Session ──────────────────────────────────────────────────────────


class ProjectTime(Record):
    created: int = 0
    updated: int = 0
    initialized: int | None = None


class ProjectInfo(Record):
    """A working directory the agent operates in. Created lazily, never mutated here."""

    id: str
    worktree: str = ""
    path: str | None = None
    vcs: str | None = None
    time: ProjectTime = Field(default_factory=ProjectTime)


class SessionTime(Record):
    created: int = 0
    """Unix millisecond timestamp."""
    updated: int = 0
    compacting: int | None = None
    archived: int | None = None


class SessionInfo(Record):
    """
    One conversational unit.

    Sessions with a ``parent_id`` are *child* sessions branched from a parent;
    they never appear in main listings and are pruned with their parent.
    """

    id: str
    version: str = ""
    project_id: str = Field(
        default="", validation_alias=AliasChoices("projectID", "projectId", "project_id")
    )
    directory: str = ""
    parent_id: str | None = Field(
        default=None, validation_alias=AliasChoices("parentID", "parentId", "parent_id")
    )
    title: str = ""
    time: SessionTime = Field(default_factory=SessionTime)

    @property
    def is_child(self) -> bool:
        return self.parent_id is not None


# ── Token accounting ───────────────────────────────────────────────────────────


class CacheUsage(Record):
    read: int = 0
    write: int = 0


class TokenUsage(Record):
    """Token counts for a single assistant message or reasoning step."""

    input: int = 0
    output: int = 0
    reasoning: int = 0
    cache: CacheUsage = Field(default_factory=CacheUsage)

    def total(self) -> int:
        return self.input + self.output + self.reasoning + self.cache.read + self.cache.write


# ── Messages ───────────────────────────────────────────────────────────────────


class MessageTime(Record):
    created: int = 0
    completed: int | None = None


class MessageError(Record):
    name: str = ""
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def message(self) -> str:
        value = self.data.get("message")
        return value if isinstance(value, str) else self.name


class ModelSelection(Record):
    provider_id: str = Field(
        default="", validation_alias=AliasChoices("providerID", "providerId", "provider_id")
    )
    model_id: str = Field(
        default="", validation_alias=AliasChoices("modelID", "modelId", "model_id")
    )


class UserMessage(Record):
    id: str
    session_id: str = Field(
        default="", validation_alias=AliasChoices("sessionID", "sessionId", "session_id")
    )
    role: Literal["user"] = "user"
    time: MessageTime = Field(default_factory=MessageTime)
    agent: str = ""
    model: ModelSelection | None = None


class AssistantMessage(Record):
    id: str
    session_id: str = Field(
        default="", validation_alias=AliasChoices("sessionID", "sessionId", "session_id")
    )
    role: Literal["assistant"] = "assistant"
    time: MessageTime = Field(default_factory=MessageTime)
    parent_id: str = Field(
        default="", validation_alias=AliasChoices("parentID", "parentId", "parent_id")
    )
    model_id: str = Field(
        default="", validation_alias=AliasChoices("modelID", "modelId", "model_id")
    )
    provider_id: str = Field(
        default="", validation_alias=AliasChoices("providerID", "providerId", "provider_id")
    )
    mode: str = ""
    agent: str = ""
    summary: bool | None = None
    cost: float = 0.0
    tokens: TokenUsage | None = None
    finish: str | None = None
    error: MessageError | None = None


# Discriminated on ``role``.
Message = Annotated[UserMessage | AssistantMessage, Field(discriminator="role")]


# ── Parts ──────────────────────────────────────────────────────────────────────


class PartTime(Record):
    start: int = 0
    end: int | None = None


class PartBase(Record):
    id: str
    session_id: str = Field(
        default="", validation_alias=AliasChoices("sessionID", "sessionId", "session_id")
    )
    message_id: str = Field(
        default="", validation_alias=AliasChoices("messageID", "messageId", "message_id")
    )


class TextPart(PartBase):
    type: Literal["text"] = "text"
    text: str = ""
    synthetic: bool | None = None
    ignored: bool | None = None
    time: PartTime | None = None


class ReasoningPart(PartBase):
    type: Literal["reasoning"] = "reasoning"
    text: str = Field(default="", validation_alias=AliasChoices("text", "reasoning"))
    time: PartTime | None = None


class ToolTime(Record):
    start: int = 0
    end: int = 0
    compacted: int | None = None


class ToolStatePending(Record):
    status: Literal["pending"] = "pending"


class ToolStateRunning(Record):
    status: Literal["running"] = "running"
    input: dict[str, Any] = Field(default_factory=dict)
    title: str | None = None
    time: PartTime = Field(default_factory=PartTime)


class ToolStateCompleted(Record):
    status: Literal["completed"] = "completed"
    input: dict[str, Any] = Field(default_factory=dict)
    output: str = ""
    title: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    time: ToolTime = Field(default_factory=ToolTime)


class ToolStateError(Record):
    status: Literal["error"] = "error"
    input: dict[str, Any] = Field(default_factory=dict)
    error: str = ""
    time: ToolTime = Field(default_factory=ToolTime)


# pending → running → {completed | error}; ``status`` is the discriminator key.
ToolState = Annotated[
    ToolStatePending | ToolStateRunning | ToolStateCompleted | ToolStateError,
    Field(discriminator="status"),
]


class ToolPart(PartBase):
    type: Literal["tool"] = "tool"
    call_id: str = Field(default="", validation_alias=AliasChoices("callID", "callId", "call_id"))
    tool: str = ""
    state: ToolState = Field(default_factory=ToolStatePending)


class StepFinishPart(PartBase):
    type: Literal["step-finish"] = "step-finish"
    reason: str = ""
    snapshot: str | None = None
    cost: float = 0.0
    tokens: TokenUsage = Field(default_factory=TokenUsage)


# Discriminated on ``type``.
Part = Annotated[
    TextPart | ToolPart | ReasoningPart | StepFinishPart,
    Field(discriminator="type"),
]


class MessageWithParts(BaseModel):
    """A message together with its typed parts."""

    info: Message
    parts: list[Part] = Field(default_factory=list)

    @property
    def id(self) -> str:
        return self.info.id

    @property
    def role(self) -> str:
        return self.info.role

    @property
    def agent(self) -> str:
        return self.info.agent

    @property
    def created(self) -> int:
        return self.info.time.created


# ── Todos ──────────────────────────────────────────────────────────────────────


TodoStatus = Literal["pending", "in_progress", "completed", "cancelled"]
TodoPriority = Literal["high", "medium", "low"]


class TodoItem(Record):
    """A per-session task entry. Unknown status/priority values are normalised."""

    id: str | None = None
    content: str
    status: TodoStatus = "pending"
    priority: TodoPriority = "medium"

    @field_validator("status", mode="before")
    @classmethod
    def _normalise_status(cls, value: Any) -> Any:
        if value in ("pending", "in_progress", "completed", "cancelled"):
            return value
        return "pending"

    @field_validator("priority", mode="before")
    @classmethod
    def _normalise_priority(cls, value: Any) -> Any:
        if value in ("high", "medium", "low"):
            return value
        return "medium"


# ── Directory / retention results ──────────────────────────────────────────────


class SessionSummary(BaseModel):
    """A main session as shown in listings, with derived message statistics."""

    id: str
    project_id: str
    directory: str
    title: str
    created_at: int
    updated_at: int
    message_count: int
    agents: list[str] = Field(default_factory=list)
    is_child: bool = False


class SessionMatch(BaseModel):
    message_id: str
    part_id: str
    excerpt: str
    role: Literal["user", "assistant"]
    agent: str | None = None


class SessionSearchResult(BaseModel):
    session_id: str
    matches: list[SessionMatch] = Field(default_factory=list)


class SessionDetail(BaseModel):
    """Aggregate statistics for a single session."""

    session: SessionInfo
    message_count: int
    agents: list[str] = Field(default_factory=list)
    has_todos: bool
    todo_count: int
    completed_todos: int


class PruneResult(BaseModel):
    """The result of a retention pass. Never persisted."""

    pruned_count: int = 0
    remaining_count: int = 0
    freed_bytes: int = 0
    pruned_session_ids: list[str] = Field(default_factory=list)


# ── Parsing helpers ────────────────────────────────────────────────────────────

_MESSAGE_ADAPTER: TypeAdapter[Message] = TypeAdapter(Message)
_PART_ADAPTER: TypeAdapter[Part] = TypeAdapter(Part)


def parse_message(data: Any) -> UserMessage | AssistantMessage | None:
    """Validate a raw message record. Returns None if it is not a user/assistant message."""
    try:
        return _MESSAGE_ADAPTER.validate_python(data)
    except ValidationError:
        return None


def parse_part(data: Any) -> TextPart | ToolPart | ReasoningPart | StepFinishPart | None:
    """
    Validate a raw part record.

    The agent service also writes part types this package does not model
    (``step-start``, ``file``, ``patch``, ...). Those return None and are
    skipped by callers.
    """
    try:
        return _PART_ADAPTER.validate_python(data)
    except ValidationError:
        return None
