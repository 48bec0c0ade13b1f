"""Drives one turn: prompt, race events and polling, retry, tear down."""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from functools import partial
from typing import Any, TypeVar

import httpx
import structlog

from tether.client import EventSubscription
from tether.errors import (
    ErrorInfo,
    TetherError,
    classify_exception,
    create_llm_fetch_error,
    create_llm_timeout_error,
    error_message,
    is_llm_fetch_error,
)
from tether.models.config import DEFAULT_AGENT, ExecutionConfig, ServerConfig
from tether.models.results import (
    ActivityTracker,
    AgentResult,
    EventStreamResult,
    PollOutcome,
    PromptAttemptResult,
)
from tether.output import ConsoleSink, OutputSink
from tether.runner.events import process_event_stream
from tether.runner.poller import poll_for_completion
from tether.server import ServerHandle, start_server

_logger = structlog.get_logger("tether.orchestrator")

T = TypeVar("T")

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_TIMEOUT = 130

CONTINUATION_PROMPT = (
    "The previous request was interrupted by a network error (fetch failed).\n"
    "Please continue where you left off. If you were in the middle of a task, resume it.\n"
    "If you had completed the task, confirm the completion."
)

ServerFactory = Callable[[], Awaitable[ServerHandle]]


class _TurnAborted(Exception):
    """The overall deadline fired while waiting on the service."""


class AttemptStream:
    """
    The event subscription and processor task of one attempt.

    ``teardown()`` cancels processing, closes the subscription and waits a
    bounded time for the processor to flush. It runs once; later calls return
    immediately.
    """

    def __init__(
        self,
        subscription: EventSubscription,
        processor: asyncio.Task[EventStreamResult],
        cancel: asyncio.Event,
        result: EventStreamResult,
        tracker: ActivityTracker,
    ) -> None:
        self.subscription = subscription
        self.processor = processor
        self.cancel = cancel
        self.result = result
        self.tracker = tracker
        self._torn_down = False

    @classmethod
    async def open(
        cls,
        client: Any,
        session_id: str,
        cancel: asyncio.Event,
        sink: OutputSink,
    ) -> AttemptStream:
        subscription = await client.subscribe_events()
        result = EventStreamResult()
        tracker = ActivityTracker()
        processor = asyncio.create_task(
            process_event_stream(
                subscription, session_id, cancel, sink=sink, tracker=tracker, result=result
            )
        )

        def stop_polling_on_error(task: asyncio.Task[EventStreamResult]) -> None:
            if result.terminal_error is not None:
                cancel.set()

        processor.add_done_callback(stop_polling_on_error)
        return cls(subscription, processor, cancel, result, tracker)

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    async def teardown(self, grace_secs: float) -> None:
        if self._torn_down:
            return
        self._torn_down = True
        self.cancel.set()
        try:
            await self.subscription.aclose()
        except (httpx.HTTPError, httpx.StreamError, OSError) as exc:
            _logger.debug("event_subscription_close_failed", error=str(exc))

        done, _ = await asyncio.wait({self.processor}, timeout=grace_secs)
        if not done:
            _logger.debug("event_processor_shutdown_timeout", grace_secs=grace_secs)
            self.processor.cancel()
            await asyncio.wait({self.processor})
        if not self.processor.cancelled() and self.processor.exception() is not None:
            _logger.debug("event_processor_failed", error=str(self.processor.exception()))


class TurnOrchestrator:
    """
    Runs one turn against the agent service and reports an :class:`AgentResult`.

    The service is either supplied as a :class:`ServerHandle` (reused, never
    closed here) or launched per turn through ``server_factory`` (default:
    :func:`tether.server.start_server`) and always closed afterwards.

    Transient failures (network / upstream fetch) are retried with a fixed
    continuation prompt. Token, cost and artifact totals come from the
    successful attempt only.

    Example::

        orchestrator = TurnOrchestrator(ExecutionConfig(agent="build"), directory="/work/repo")
        result = await orchestrator.run("Fix the failing test in tests/test_api.py")
        sys.exit(result.exit_code)
    """

    def __init__(
        self,
        config: ExecutionConfig | None = None,
        *,
        directory: str,
        sink: OutputSink | None = None,
        server: ServerHandle | None = None,
        server_factory: ServerFactory | None = None,
        server_config: ServerConfig | None = None,
    ) -> None:
        self.config = config or ExecutionConfig()
        self.directory = directory
        self._sink = sink or ConsoleSink()
        self._server = server
        self._server_factory = server_factory or partial(
            start_server, server_config or ServerConfig(), directory
        )
        self._abort = asyncio.Event()
        self._timed_out = False
        self._attempt_cancel: asyncio.Event | None = None

    # ── Public ─────────────────────────────────────────────────────────────────

    async def run(
        self, prompt: str, attachments: Sequence[Mapping[str, Any]] | None = None
    ) -> AgentResult:
        """
        Execute the turn.

        Args:
            prompt: The initial prompt text.
            attachments: Extra prompt parts (e.g. file parts) sent with the
                first attempt only.

        Returns:
            The turn outcome. Never raises for service, network or
            storage failures; those are reported in the result.
        """
        started = time.monotonic()
        self._abort = asyncio.Event()
        self._timed_out = False
        timeout_secs = self.config.timeout_secs
        retry = self.config.retry
        loop = asyncio.get_running_loop()
        timer = loop.call_later(timeout_secs, self._on_timeout) if timeout_secs > 0 else None

        _logger.info(
            "turn_started",
            agent=self.config.agent,
            has_model_override=self.config.model is not None,
            timeout_secs=timeout_secs,
        )

        owned: ServerHandle | None = None
        session_id: str | None = None
        last_error: str | None = None
        last_llm_error: ErrorInfo | None = None
        try:
            if self._server is not None:
                client = self._server.client
                _logger.debug("reusing_server", url=self._server.url)
            else:
                owned = await self._unless_aborted(self._server_factory())
                client = owned.client

            session = await self._unless_aborted(client.create_session())
            session_id = session.id
            _logger.debug("session_created", session_id=session_id)

            for attempt in range(1, retry.max_attempts + 1):
                if self._timed_out:
                    return self._timeout_result(started, session_id, last_llm_error)

                remaining = timeout_secs - (time.monotonic() - started)
                if timeout_secs > 0 and attempt > 1 and remaining <= retry.delay_secs:
                    _logger.warning(
                        "insufficient_time_for_retry",
                        remaining_secs=round(remaining, 3),
                        required_secs=retry.delay_secs,
                        attempt=attempt,
                    )
                    break

                is_retry = attempt > 1
                _logger.debug("sending_prompt", attempt=attempt, is_retry=is_retry)
                try:
                    outcome = await self._attempt(
                        client,
                        session_id,
                        CONTINUATION_PROMPT if is_retry else prompt,
                        None if is_retry else attachments,
                    )
                except (httpx.HTTPError, TetherError) as exc:
                    message = error_message(exc)
                    _logger.error("prompt_attempt_raised", attempt=attempt, error=message)
                    llm_error = classify_exception(exc)
                    outcome = PromptAttemptResult(
                        success=False,
                        error=message,
                        llm_error=llm_error,
                        should_retry=llm_error is not None and llm_error.retryable,
                    )

                if outcome.success:
                    duration_ms = self._elapsed_ms(started)
                    _logger.info(
                        "turn_completed", session_id=session_id, duration_ms=duration_ms, attempts=attempt
                    )
                    return self._success_result(duration_ms, session_id, outcome.stream_result)

                last_error = outcome.error
                last_llm_error = outcome.llm_error
                if outcome.timed_out or self._timed_out:
                    return self._timeout_result(started, session_id, last_llm_error)

                if not outcome.should_retry or attempt >= retry.max_attempts:
                    if outcome.should_retry:
                        _logger.warning("retries_exhausted", attempts=attempt, error=outcome.error)
                    break

                _logger.warning(
                    "transient_error_retrying",
                    attempt=attempt,
                    max_attempts=retry.max_attempts,
                    error=outcome.error,
                    delay_secs=retry.delay_secs,
                    session_id=session_id,
                )
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(self._abort.wait(), timeout=retry.delay_secs)

            if self._timed_out:
                return self._timeout_result(started, session_id, last_llm_error)
            return AgentResult(
                success=False,
                exit_code=EXIT_FAILURE,
                duration_ms=self._elapsed_ms(started),
                session_id=session_id,
                error=last_error or "Unknown error",
                llm_error=last_llm_error,
            )
        except _TurnAborted:
            return self._timeout_result(started, session_id, last_llm_error)
        except (httpx.HTTPError, TetherError) as exc:
            message = error_message(exc)
            duration_ms = self._elapsed_ms(started)
            _logger.error("turn_failed", error=message, duration_ms=duration_ms)
            return AgentResult(
                success=False,
                exit_code=EXIT_FAILURE,
                duration_ms=duration_ms,
                session_id=session_id,
                error=message,
                llm_error=classify_exception(exc),
            )
        finally:
            if timer is not None:
                timer.cancel()
            self._abort.set()
            if owned is not None:
                try:
                    await owned.close()
                except Exception as exc:
                    _logger.warning("server_close_failed", error=str(exc))

    # ── Attempts ───────────────────────────────────────────────────────────────

    def _prompt_body(
        self, text: str, attachments: Sequence[Mapping[str, Any]] | None
    ) -> dict[str, Any]:
        parts: list[dict[str, Any]] = [{"type": "text", "text": text}]
        if attachments:
            parts.extend(dict(a) for a in attachments)
            _logger.info("including_attachments", count=len(attachments))
        body: dict[str, Any] = {"parts": parts}
        if self.config.model is not None:
            body["model"] = self.config.model.to_wire()
        # Only non-default agents are named; the service resolves its own default.
        if self.config.agent != DEFAULT_AGENT:
            body["agent"] = self.config.agent
        return body

    async def _attempt(
        self,
        client: Any,
        session_id: str,
        text: str,
        attachments: Sequence[Mapping[str, Any]] | None,
    ) -> PromptAttemptResult:
        cancel = asyncio.Event()
        self._attempt_cancel = cancel
        if self._abort.is_set():
            cancel.set()

        stream = await AttemptStream.open(client, session_id, cancel, self._sink)
        try:
            try:
                await self._unless_aborted(
                    client.prompt_async(session_id, self._prompt_body(text, attachments), self.directory)
                )
            except (httpx.HTTPError, TetherError) as exc:
                message = error_message(exc)
                _logger.error("prompt_failed", session_id=session_id, error=message)
                llm_error = classify_exception(exc, stream.result.model) or stream.result.terminal_error
                return PromptAttemptResult(
                    success=False,
                    error=message,
                    llm_error=llm_error,
                    should_retry=llm_error is not None and llm_error.retryable,
                    stream_result=stream.result,
                )

            poll = await poll_for_completion(
                partial(client.session_status, self.directory),
                session_id,
                cancel,
                config=self.config.poll,
                max_poll_secs=self.config.timeout_secs,
                tracker=stream.tracker,
            )
        finally:
            await stream.teardown(self.config.retry.shutdown_grace_secs)
            self._attempt_cancel = None

        terminal = stream.result.terminal_error
        if poll.completed and terminal is None:
            return PromptAttemptResult(success=True, stream_result=stream.result)

        if terminal is not None:
            _logger.error("session_failed", session_id=session_id, error=terminal.message)
            return PromptAttemptResult(
                success=False,
                error=terminal.message,
                llm_error=terminal,
                should_retry=terminal.retryable,
                stream_result=stream.result,
            )

        error = poll.error or "Session did not reach idle state"
        _logger.error("completion_polling_failed", session_id=session_id, error=error)
        if poll.outcome is PollOutcome.FAILED and poll.retry_message and is_llm_fetch_error(
            poll.retry_message
        ):
            llm_error = create_llm_fetch_error(poll.retry_message, stream.result.model)
            return PromptAttemptResult(
                success=False,
                error=error,
                llm_error=llm_error,
                should_retry=True,
                stream_result=stream.result,
            )
        return PromptAttemptResult(
            success=False,
            error=error,
            timed_out=poll.outcome is PollOutcome.TIMEOUT
            or (poll.outcome is PollOutcome.ABORTED and self._timed_out),
            stream_result=stream.result,
        )

    # ── Helpers ────────────────────────────────────────────────────────────────

    def _on_timeout(self) -> None:
        self._timed_out = True
        _logger.warning("turn_timeout", timeout_secs=self.config.timeout_secs)
        self._abort.set()
        if self._attempt_cancel is not None:
            self._attempt_cancel.set()

    async def _unless_aborted(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the overall deadline fires first."""
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.create_task(self._abort.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                await asyncio.wait({task})
        if task.cancelled():
            raise _TurnAborted
        return task.result()

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)

    def _success_result(
        self, duration_ms: int, session_id: str, stream: EventStreamResult
    ) -> AgentResult:
        return AgentResult(
            success=True,
            exit_code=EXIT_SUCCESS,
            duration_ms=duration_ms,
            session_id=session_id,
            token_usage=stream.tokens,
            model=stream.model,
            cost=stream.cost,
            prs_created=list(stream.prs_created),
            commits_created=list(stream.commits_created),
            comments_posted=stream.comments_posted,
        )

    def _timeout_result(
        self, started: float, session_id: str | None, llm_error: ErrorInfo | None
    ) -> AgentResult:
        message = f"Execution timed out after {self.config.timeout_secs}s"
        return AgentResult(
            success=False,
            exit_code=EXIT_TIMEOUT,
            duration_ms=self._elapsed_ms(started),
            session_id=session_id,
            error=message,
            llm_error=llm_error or create_llm_timeout_error(message),
        )
