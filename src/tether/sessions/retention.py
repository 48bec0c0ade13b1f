"""Age/count retention with parent→child cascade."""

from __future__ import annotations

import time
from collections import defaultdict

import structlog

from tether.models.config import DEFAULT_RETENTION_CONFIG, RetentionConfig
from tether.models.records import PruneResult, SessionInfo
from tether.store.base import SessionBackend

_logger = structlog.get_logger("tether.retention")

_DAY_MS = 24 * 60 * 60 * 1000


def select_main_sessions_to_keep(
    main_sessions: list[SessionInfo], config: RetentionConfig, now_ms: int
) -> set[str]:
    """
    Ids of main sessions the policy keeps.

    Keep iff rank (by ``time.updated``, newest first, 0-based) is below
    ``max_sessions`` OR the session was updated within ``max_age_days``.
    """
    cutoff = now_ms - config.max_age_days * _DAY_MS
    ranked = sorted(main_sessions, key=lambda s: s.time.updated, reverse=True)
    return {
        session.id
        for rank, session in enumerate(ranked)
        if rank < config.max_sessions or session.time.updated >= cutoff
    }


def collect_descendants(root_ids: list[str], sessions: list[SessionInfo]) -> list[str]:
    """Every session below ``root_ids`` in the parent graph, breadth-first."""
    children: dict[str, list[str]] = defaultdict(list)
    for session in sessions:
        if session.parent_id is not None:
            children[session.parent_id].append(session.id)

    seen = set(root_ids)
    ordered: list[str] = []
    queue = list(root_ids)
    while queue:
        parent = queue.pop(0)
        for child in children.get(parent, []):
            if child in seen:
                continue
            seen.add(child)
            ordered.append(child)
            queue.append(child)
    return ordered


async def prune_sessions(
    backend: SessionBackend,
    directory: str,
    config: RetentionConfig = DEFAULT_RETENTION_CONFIG,
    *,
    now_ms: int | None = None,
) -> PruneResult:
    """
    Delete main sessions that are both beyond the newest ``max_sessions`` and
    older than ``max_age_days``, together with all their descendants.

    Deletion is best-effort: a session whose delete fails still counts as
    pruned but frees 0 bytes. Nothing here raises on storage failure.

    Args:
        backend: Record store to prune.
        directory: Project working directory.
        config: Retention thresholds.
        now_ms: Reference time in Unix milliseconds (defaults to now).

    Returns:
        Counts, freed bytes and ids of every pruned session (children included).
        ``remaining_count`` counts kept main sessions.
    """
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    _logger.info(
        "pruning_started",
        directory=directory,
        max_sessions=config.max_sessions,
        max_age_days=config.max_age_days,
    )

    project = await backend.find_project(directory)
    if project is None:
        _logger.debug("no_project_for_directory", directory=directory)
        return PruneResult()

    all_sessions = await backend.list_sessions(project)
    main_sessions = [s for s in all_sessions if not s.is_child]
    if not main_sessions:
        return PruneResult()

    keep = select_main_sessions_to_keep(main_sessions, config, now_ms)
    evicted = [
        s.id
        for s in sorted(main_sessions, key=lambda s: s.time.updated, reverse=True)
        if s.id not in keep
    ]
    remaining = len(main_sessions) - len(evicted)
    if not evicted:
        _logger.info("nothing_to_prune", remaining_count=remaining)
        return PruneResult(remaining_count=remaining)

    to_delete = evicted + collect_descendants(evicted, all_sessions)

    freed = 0
    for session_id in to_delete:
        try:
            freed_here = await backend.delete_session(session_id)
        except Exception as exc:
            _logger.warning("session_prune_failed", session_id=session_id, error=str(exc))
            freed_here = 0
        freed += max(freed_here, 0)
        _logger.debug("session_pruned", session_id=session_id, freed_bytes=freed_here)

    result = PruneResult(
        pruned_count=len(to_delete),
        remaining_count=remaining,
        freed_bytes=freed,
        pruned_session_ids=to_delete,
    )
    _logger.info(
        "pruning_complete",
        pruned_count=result.pruned_count,
        remaining_count=result.remaining_count,
        freed_bytes=result.freed_bytes,
    )
    return result
