"""Session listing, full-text search, and single-session statistics.

All functions are read-only and take the active backend explicitly.
"""

from __future__ import annotations

import re
from datetime import datetime

import structlog

from tether.models.records import (
    MessageWithParts,
    ReasoningPart,
    SessionDetail,
    SessionInfo,
    SessionMatch,
    SessionSearchResult,
    SessionSummary,
    TextPart,
    ToolPart,
    ToolStateCompleted,
)
from tether.store.base import SessionBackend

_logger = structlog.get_logger("tether.sessions")

DEFAULT_SEARCH_LIMIT = 20
MAX_SEARCH_LIMIT = 100
EXCERPT_RADIUS = 50


def _to_ms(value: datetime | int | None) -> int | None:
    if value is None or isinstance(value, int):
        return value
    return int(value.timestamp() * 1000)


def _agents(messages: list[MessageWithParts]) -> list[str]:
    """Distinct non-empty agent names, in first-seen order."""
    seen: dict[str, None] = {}
    for message in messages:
        if message.agent:
            seen.setdefault(message.agent, None)
    return list(seen)


async def _main_sessions(backend: SessionBackend, directory: str) -> list[SessionInfo]:
    """Root sessions of the project at ``directory``, most recently updated first."""
    project = await backend.find_project(directory)
    if project is None:
        _logger.debug("no_project_for_directory", directory=directory)
        return []
    sessions = [s for s in await backend.list_sessions(project) if not s.is_child]
    sessions.sort(key=lambda s: s.time.updated, reverse=True)
    return sessions


async def list_sessions(
    backend: SessionBackend,
    directory: str,
    *,
    limit: int | None = None,
    from_date: datetime | int | None = None,
    to_date: datetime | int | None = None,
) -> list[SessionSummary]:
    """
    List main sessions for the project at ``directory``, most recently updated first.

    Child sessions are never listed. ``from_date`` / ``to_date`` bound
    ``time.updated`` inclusively and accept datetimes or Unix milliseconds.

    Args:
        backend: Record store to read from.
        directory: Project working directory.
        limit: Maximum number of sessions to return (all when None).
        from_date: Earliest ``time.updated`` to include.
        to_date: Latest ``time.updated`` to include.

    Returns:
        Summaries with message counts and participating agents.
    """
    start_ms = _to_ms(from_date)
    end_ms = _to_ms(to_date)
    sessions = [
        s
        for s in await _main_sessions(backend, directory)
        if (start_ms is None or s.time.updated >= start_ms)
        and (end_ms is None or s.time.updated <= end_ms)
    ]
    if limit is not None:
        sessions = sessions[: max(limit, 0)]

    summaries: list[SessionSummary] = []
    for session in sessions:
        messages = await backend.get_messages(session.id)
        summaries.append(
            SessionSummary(
                id=session.id,
                project_id=session.project_id,
                directory=session.directory,
                title=session.title,
                created_at=session.time.created,
                updated_at=session.time.updated,
                message_count=len(messages),
                agents=_agents(messages),
                is_child=False,
            )
        )
    _logger.info("sessions_listed", count=len(summaries), directory=directory)
    return summaries


def _searchable_text(part: object) -> str | None:
    if isinstance(part, TextPart | ReasoningPart):
        return part.text
    if isinstance(part, ToolPart) and isinstance(part.state, ToolStateCompleted):
        return f"{part.tool}: {part.state.output}"
    return None


def _excerpt(text: str, index: int, length: int) -> str:
    start = max(0, index - EXCERPT_RADIUS)
    end = min(len(text), index + length + EXCERPT_RADIUS)
    return f"...{text[start:end]}..."


def match_messages(
    messages: list[MessageWithParts], query: str, *, case_sensitive: bool = False
) -> list[SessionMatch]:
    """
    Find ``query`` in each text-bearing part, one match per part.

    The excerpt is taken around the first occurrence in the original text.
    """
    if not query:
        return []
    pattern = re.compile(re.escape(query), 0 if case_sensitive else re.IGNORECASE)
    matches: list[SessionMatch] = []
    for message in messages:
        for part in message.parts:
            text = _searchable_text(part)
            if not text:
                continue
            found = pattern.search(text)
            if found is None:
                continue
            matches.append(
                SessionMatch(
                    message_id=message.id,
                    part_id=part.id,
                    excerpt=_excerpt(text, found.start(), found.end() - found.start()),
                    role=message.role,
                    agent=message.agent or None,
                )
            )
    return matches


async def search_sessions(
    backend: SessionBackend,
    query: str,
    directory: str,
    *,
    limit: int = DEFAULT_SEARCH_LIMIT,
    case_sensitive: bool = False,
    session_id: str | None = None,
) -> list[SessionSearchResult]:
    """
    Substring search across session content.

    Text, reasoning and completed tool output are searched. Results are grouped
    per session (most recently updated first); sessions without matches are
    omitted and the total number of matches never exceeds ``limit`` (itself
    capped at 100).

    Args:
        backend: Record store to read from.
        query: Substring to look for.
        directory: Project working directory.
        limit: Maximum matches across all sessions.
        case_sensitive: Compare without case folding.
        session_id: Search only this session.
    """
    limit = max(0, min(limit, MAX_SEARCH_LIMIT))
    _logger.debug(
        "searching_sessions", query=query, directory=directory, limit=limit, case_sensitive=case_sensitive
    )
    if limit == 0 or not query:
        return []

    if session_id is not None:
        matches = match_messages(
            await backend.get_messages(session_id), query, case_sensitive=case_sensitive
        )
        if not matches:
            return []
        return [SessionSearchResult(session_id=session_id, matches=matches[:limit])]

    results: list[SessionSearchResult] = []
    total = 0
    for session in await _main_sessions(backend, directory):
        if total >= limit:
            break
        matches = match_messages(
            await backend.get_messages(session.id), query, case_sensitive=case_sensitive
        )
        if not matches:
            continue
        taken = matches[: limit - total]
        results.append(SessionSearchResult(session_id=session.id, matches=taken))
        total += len(taken)

    _logger.info("session_search_complete", query=query, result_count=len(results), total_matches=total)
    return results


async def get_session_info(backend: SessionBackend, session_id: str) -> SessionDetail | None:
    """Message and todo statistics for one session, or None if it does not exist."""
    session = await backend.get_session(session_id)
    if session is None:
        return None
    messages = await backend.get_messages(session_id)
    todos = await backend.get_todos(session_id)
    return SessionDetail(
        session=session,
        message_count=len(messages),
        agents=_agents(messages),
        has_todos=bool(todos),
        todo_count=len(todos),
        completed_todos=sum(1 for t in todos if t.status == "completed"),
    )
