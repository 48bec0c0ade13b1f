"""Turn execution: event processing, completion polling, orchestration."""

from tether.runner.artifacts import detect_artifacts
from tether.runner.events import process_event_stream
from tether.runner.orchestrator import (
    CONTINUATION_PROMPT,
    EXIT_FAILURE,
    EXIT_SUCCESS,
    EXIT_TIMEOUT,
    AttemptStream,
    TurnOrchestrator,
)
from tether.runner.poller import poll_for_completion

__all__ = [
    "CONTINUATION_PROMPT",
    "EXIT_FAILURE",
    "EXIT_SUCCESS",
    "EXIT_TIMEOUT",
    "AttemptStream",
    "TurnOrchestrator",
    "detect_artifacts",
    "poll_for_completion",
    "process_event_stream",
]
