"""Exceptions and failure classification.

Turn failures fall into four groups: transient (network / upstream fetch),
terminal (agent configuration and other turn errors), timeouts, and
opportunistic storage failures. Only the first three ever change a turn's
reported outcome; storage failures are logged and absorbed where they occur.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any, Literal

import httpx
from pydantic import BaseModel

# ── Exceptions ─────────────────────────────────────────────────────────────────


class TetherError(Exception):
    """Base class for tether errors."""


class RemoteAPIError(TetherError):
    """Raised when the agent service answers with a non-2xx status."""

    def __init__(self, method: str, path: str, status_code: int, body: str = "") -> None:
        detail = f": {body}" if body else ""
        super().__init__(f"{method} {path} failed with HTTP {status_code}{detail}")
        self.method = method
        self.path = path
        self.status_code = status_code
        self.body = body


class SessionCreateError(TetherError):
    """Raised when the agent service does not return a usable session."""


class ServerBootstrapError(TetherError):
    """Raised when an owned agent-service process fails to start."""


# ── Structured classification ──────────────────────────────────────────────────

ErrorType = Literal["llm_fetch_error", "llm_timeout", "configuration", "api_error", "internal"]


class ErrorInfo(BaseModel):
    """Structured description of a turn failure."""

    type: ErrorType
    message: str
    retryable: bool = False
    details: str | None = None
    suggested_action: str | None = None


_LLM_FETCH_ERROR_PATTERNS = (
    re.compile(r"fetch failed", re.IGNORECASE),
    re.compile(r"connect\s*timeout", re.IGNORECASE),
    re.compile(r"connecttimeouterror", re.IGNORECASE),
    re.compile(r"timed?\s*out", re.IGNORECASE),
    re.compile(r"econnrefused", re.IGNORECASE),
    re.compile(r"econnreset", re.IGNORECASE),
    re.compile(r"etimedout", re.IGNORECASE),
    re.compile(r"network error", re.IGNORECASE),
)

_AGENT_NOT_FOUND_PATTERNS = (
    re.compile(r"agent\s+not\s+found", re.IGNORECASE),
    re.compile(r"unknown\s+agent", re.IGNORECASE),
    re.compile(r"invalid\s+agent", re.IGNORECASE),
    re.compile(r"agent\s+\S+\s+does\s+not\s+exist", re.IGNORECASE),
    re.compile(r"no\s+agent\s+named", re.IGNORECASE),
    re.compile(r"agent\s+\S+\s+is\s+not\s+available", re.IGNORECASE),
)


def _mapping_text(error: Mapping[str, Any]) -> str:
    parts: list[str] = []
    message = error.get("message")
    if isinstance(message, str):
        parts.append(message)
    data = error.get("data")
    if isinstance(data, Mapping) and isinstance(data.get("message"), str):
        parts.append(data["message"])
    cause = error.get("cause")
    if isinstance(cause, str):
        parts.append(cause)
    if not parts and isinstance(error.get("name"), str):
        parts.append(error["name"])
    return " ".join(parts)


def _classifiable_text(error: object) -> str:
    if error is None:
        return ""
    if isinstance(error, str):
        return error
    if isinstance(error, BaseException):
        text = str(error) or type(error).__name__
        cause = error.__cause__
        if cause is not None:
            text = f"{text} {cause}"
        return text
    if isinstance(error, Mapping):
        return _mapping_text(error)
    return str(error)


def error_message(error: object) -> str:
    """Render any error value (exception, mapping payload, string) as one line of text."""
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    if isinstance(error, Mapping):
        return _mapping_text(error) or str(dict(error))
    return str(error)


def is_llm_fetch_error(error: object) -> bool:
    """Return True for transient network / upstream-fetch failures worth retrying."""
    if error is None:
        return False
    if isinstance(error, httpx.TransportError):
        return True
    text = _classifiable_text(error)
    return any(pattern.search(text) for pattern in _LLM_FETCH_ERROR_PATTERNS)


def is_agent_not_found_error(error: object) -> bool:
    """Return True when the service rejected the requested agent name."""
    if error is None:
        return False
    text = _classifiable_text(error)
    return any(pattern.search(text) for pattern in _AGENT_NOT_FOUND_PATTERNS)


def create_llm_fetch_error(message: str, model: str | None = None) -> ErrorInfo:
    return ErrorInfo(
        type="llm_fetch_error",
        message=f"LLM request failed: {message}",
        retryable=True,
        details=None if model is None else f"Model: {model}",
        suggested_action=(
            "This is a transient network error. The request may succeed on retry, "
            "or try a different model."
        ),
    )


def create_agent_error(message: str, agent: str | None = None) -> ErrorInfo:
    return ErrorInfo(
        type="configuration",
        message=f"Agent error: {message}",
        retryable=False,
        details=None if agent is None else f"Requested agent: {agent}",
        suggested_action=(
            "Verify the agent name is correct and the required plugins are installed."
        ),
    )


def create_llm_timeout_error(message: str) -> ErrorInfo:
    return ErrorInfo(
        type="llm_timeout",
        message=message,
        retryable=True,
        suggested_action="Try again with a simpler prompt or increased timeout.",
    )


def create_api_error(error: RemoteAPIError) -> ErrorInfo:
    return ErrorInfo(
        type="api_error",
        message=str(error),
        retryable=False,
        details=error.body or None,
        suggested_action="Check that the agent service is healthy and reachable.",
    )


def create_internal_error(message: str) -> ErrorInfo:
    return ErrorInfo(type="internal", message=message, retryable=False)


def classify_session_error(error: object, model: str | None = None) -> ErrorInfo:
    """Classify a ``session.error`` payload into transient, configuration, or generic."""
    text = error_message(error)
    if is_llm_fetch_error(error):
        return create_llm_fetch_error(text, model)
    if is_agent_not_found_error(error):
        return create_agent_error(text)
    return create_internal_error(f"Agent error: {text}")


def classify_exception(error: BaseException, model: str | None = None) -> ErrorInfo | None:
    """Classify an exception raised while talking to the service, or None if it has no category."""
    if is_llm_fetch_error(error):
        return create_llm_fetch_error(error_message(error), model)
    if isinstance(error, RemoteAPIError):
        return create_api_error(error)
    return None
