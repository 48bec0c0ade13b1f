"""Append a run summary to a session so later searches can find it."""

from __future__ import annotations

from typing import Literal

import structlog
from pydantic import BaseModel, Field

from tether.models.records import TokenUsage
from tether.store.base import SessionBackend

_logger = structlog.get_logger("tether.writeback")


class RunSummary(BaseModel):
    """Host-side facts about one invocation."""

    event_type: str
    repo: str
    ref: str
    run_id: str
    cache_status: Literal["hit", "miss", "corrupted"] = "miss"
    duration_secs: int = 0
    session_ids: list[str] = Field(default_factory=list)
    created_prs: list[str] = Field(default_factory=list)
    created_commits: list[str] = Field(default_factory=list)
    token_usage: TokenUsage | None = None


def format_run_summary(summary: RunSummary) -> str:
    lines = [
        "--- Run Summary ---",
        f"Event: {summary.event_type}",
        f"Repo: {summary.repo}",
        f"Ref: {summary.ref}",
        f"Run ID: {summary.run_id}",
        f"Cache: {summary.cache_status}",
        f"Duration: {summary.duration_secs}s",
    ]
    if summary.session_ids:
        lines.append(f"Sessions used: {', '.join(summary.session_ids)}")
    if summary.created_prs:
        lines.append(f"PRs created: {', '.join(summary.created_prs)}")
    if summary.created_commits:
        lines.append(f"Commits: {', '.join(summary.created_commits)}")
    if summary.token_usage is not None:
        lines.append(
            f"Tokens: {summary.token_usage.input} in / {summary.token_usage.output} out"
        )
    return "\n".join(lines)


async def write_session_summary(
    backend: SessionBackend, session_id: str, summary: RunSummary
) -> bool:
    """
    Write ``summary`` into ``session_id`` as a synthetic user message.

    Failures are logged by the backend and reported as False, never raised.
    """
    written = await backend.create_summary_message(session_id, format_run_summary(summary))
    if written:
        _logger.info("session_summary_written", session_id=session_id, backend=backend.kind)
    else:
        _logger.warning("session_summary_skipped", session_id=session_id, backend=backend.kind)
    return written
