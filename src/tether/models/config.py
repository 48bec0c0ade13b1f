"""Configuration models for tether components."""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, Field

from tether.paths import get_storage_path

DEFAULT_AGENT = "build"


class RetentionConfig(BaseModel):
    """
    Session retention policy.

    A main session is kept if it is among the ``max_sessions`` most recently
    updated *or* younger than ``max_age_days``. Eviction therefore requires a
    session to fail both conditions.
    """

    max_sessions: int = Field(default=50, ge=0)
    max_age_days: int = Field(default=30, ge=0)


DEFAULT_RETENTION_CONFIG = RetentionConfig()


class PollConfig(BaseModel):
    """Completion poller timing."""

    interval_secs: float = Field(default=0.5, gt=0)
    error_grace_cycles: int = Field(
        default=3,
        ge=1,
        description="Consecutive ``retry`` statuses tolerated before the attempt fails.",
    )
    initial_activity_timeout_secs: float = Field(
        default=90.0,
        ge=0,
        description=(
            "Fail the attempt if no meaningful event arrives within this window. "
            "Catches a service that crashed before producing any output. 0 disables."
        ),
    )


class RetryConfig(BaseModel):
    """Continuation-prompt retry policy for transient failures."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    delay_secs: float = Field(default=5.0, ge=0)
    shutdown_grace_secs: float = Field(
        default=2.0,
        ge=0,
        description="How long to wait for the event processor to flush after an attempt.",
    )


class ModelRef(BaseModel):
    """A provider/model pair as the agent service expects it."""

    provider_id: str
    model_id: str

    @classmethod
    def parse(cls, value: str) -> ModelRef:
        """
        Parse a ``provider/model`` string.

        Raises:
            ValueError: If the string does not contain a provider and a model.
        """
        provider, sep, model = value.strip().partition("/")
        if not sep or not provider or not model:
            raise ValueError(f"Model must be in 'provider/model' form, got {value!r}")
        return cls(provider_id=provider, model_id=model)

    def to_wire(self) -> dict[str, str]:
        return {"providerID": self.provider_id, "modelID": self.model_id}


class ExecutionConfig(BaseModel):
    """Per-turn execution settings for the orchestrator."""

    agent: str = DEFAULT_AGENT
    model: ModelRef | None = None
    timeout_secs: float = Field(
        default=1800.0,
        ge=0,
        description="Overall wall-clock budget for the whole turn. 0 disables.",
    )
    poll: PollConfig = Field(default_factory=PollConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)


class ServerConfig(BaseModel):
    """How to launch an owned agent-service process."""

    command: str = "opencode"
    hostname: str = "127.0.0.1"
    port: int = Field(default=4096, ge=0, le=65535)
    startup_timeout_secs: float = Field(default=10.0, gt=0)


class TetherConfig(BaseModel):
    """
    Top-level configuration.

    All sub-configs have defaults and can be overridden individually.

    Example::

        config = TetherConfig(
            retention=RetentionConfig(max_sessions=20),
            execution=ExecutionConfig(agent="plan", timeout_secs=600),
        )
    """

    storage_path: str = Field(default_factory=get_storage_path)
    server_url: str | None = None
    """Attach to an already running service instead of launching one."""
    log_level: str = "INFO"
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> TetherConfig:
        """
        Build a config from ``TETHER_*`` environment variables.

        Unset or empty variables fall back to defaults.

        Raises:
            pydantic.ValidationError: If a variable holds an invalid value.
            ValueError: If ``TETHER_MODEL`` is not ``provider/model``.
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            value = env.get(name, "").strip()
            return value or None

        retention: dict[str, str] = {}
        if (value := get("TETHER_MAX_SESSIONS")) is not None:
            retention["max_sessions"] = value
        if (value := get("TETHER_MAX_AGE_DAYS")) is not None:
            retention["max_age_days"] = value

        execution: dict[str, object] = {}
        if (value := get("TETHER_AGENT")) is not None:
            execution["agent"] = value
        if (value := get("TETHER_MODEL")) is not None:
            execution["model"] = ModelRef.parse(value)
        if (value := get("TETHER_TIMEOUT_SECS")) is not None:
            execution["timeout_secs"] = value

        fields: dict[str, object] = {
            "retention": RetentionConfig.model_validate(retention),
            "execution": ExecutionConfig.model_validate(execution),
        }
        if (value := get("TETHER_STORAGE_PATH")) is not None:
            fields["storage_path"] = value
        if (value := get("TETHER_SERVER_URL")) is not None:
            fields["server_url"] = value
        if (value := get("TETHER_LOG_LEVEL")) is not None:
            fields["log_level"] = value.upper()
        return cls.model_validate(fields)
