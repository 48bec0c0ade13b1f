"""Fixed-interval turn status polling, independent of the event stream."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog

from tether.errors import RemoteAPIError
from tether.models.config import PollConfig
from tether.models.events import IdleStatus, RetryStatus, parse_status
from tether.models.results import ActivityTracker, PollOutcome, PollResult

_logger = structlog.get_logger("tether.poller")

StatusQuery = Callable[[], Awaitable[dict[str, Any]]]


async def _sleep_unless_cancelled(cancel: asyncio.Event, seconds: float) -> None:
    try:
        await asyncio.wait_for(cancel.wait(), timeout=seconds)
    except TimeoutError:
        pass


def _check_first_activity(
    config: PollConfig, tracker: ActivityTracker | None, started: float, session_id: str
) -> PollResult | None:
    if tracker is None or tracker.first_meaningful_event_received:
        return None
    if config.initial_activity_timeout_secs <= 0:
        return None
    activity_ms = int((time.monotonic() - started) * 1000)
    if activity_ms < config.initial_activity_timeout_secs * 1000:
        return None
    _logger.error("no_agent_activity", session_id=session_id, elapsed_ms=activity_ms)
    return PollResult(
        PollOutcome.FAILED,
        error=(
            f"No agent activity detected after {activity_ms}ms; "
            "server may have crashed during prompt processing"
        ),
    )


async def poll_for_completion(
    query_status: StatusQuery,
    session_id: str,
    cancel: asyncio.Event,
    *,
    config: PollConfig | None = None,
    max_poll_secs: float = 0.0,
    tracker: ActivityTracker | None = None,
) -> PollResult:
    """
    Poll until the turn is idle or a terminal condition is hit.

    Each tick, after sleeping ``config.interval_secs``:

    - ``cancel`` set → ``ABORTED``.
    - ``tracker.session_idle`` already set by the event stream → ``IDLE``.
    - elapsed ≥ ``max_poll_secs`` (when > 0) → ``TIMEOUT``.
    - status ``idle`` → ``IDLE``; ``retry`` ``error_grace_cycles`` times in a
      row → ``FAILED``; anything else resets that counter.
    - no meaningful event seen within ``initial_activity_timeout_secs`` →
      ``FAILED``.

    A failed status request is logged and counts as an uneventful tick; the
    first-activity budget is still checked on that tick.

    Args:
        query_status: Returns the service's ``{session_id: status}`` map.
        session_id: Session whose status decides completion.
        cancel: Abort signal shared with the event processor.
        config: Interval, grace count and first-activity budget.
        max_poll_secs: Total budget for this poll loop. 0 disables it.
        tracker: Flags written by the event processor.
    """
    config = config or PollConfig()
    started = time.monotonic()
    error_cycles = 0

    while not cancel.is_set():
        await _sleep_unless_cancelled(cancel, config.interval_secs)
        if cancel.is_set():
            break

        if tracker is not None and tracker.session_idle:
            _logger.debug("session_idle_from_events", session_id=session_id)
            return PollResult(PollOutcome.IDLE)

        elapsed_ms = int((time.monotonic() - started) * 1000)
        if max_poll_secs > 0 and elapsed_ms >= max_poll_secs * 1000:
            _logger.warning("poll_timeout", elapsed_ms=elapsed_ms, max_poll_secs=max_poll_secs)
            return PollResult(PollOutcome.TIMEOUT, error=f"Poll timeout after {elapsed_ms}ms")

        try:
            statuses = await query_status()
        except (httpx.HTTPError, RemoteAPIError) as exc:
            _logger.debug("poll_request_failed", error=str(exc))
            stalled = _check_first_activity(config, tracker, started, session_id)
            if stalled is not None:
                return stalled
            continue

        status = parse_status(statuses.get(session_id))
        if status is None:
            _logger.debug("session_status_missing", session_id=session_id)
        elif isinstance(status, IdleStatus):
            _logger.debug("session_idle_from_poll", session_id=session_id)
            return PollResult(PollOutcome.IDLE)
        elif isinstance(status, RetryStatus):
            error_cycles += 1
            _logger.debug(
                "session_retrying",
                session_id=session_id,
                attempt=status.attempt,
                message=status.message,
                error_cycles=error_cycles,
            )
            if error_cycles >= config.error_grace_cycles:
                return PollResult(
                    PollOutcome.FAILED,
                    error=f"Session error after {error_cycles} retry cycles: {status.message}",
                    retry_message=status.message,
                )
        else:
            error_cycles = 0

        stalled = _check_first_activity(config, tracker, started, session_id)
        if stalled is not None:
            return stalled

    return PollResult(PollOutcome.ABORTED, error="Aborted")
