"""Launching, attaching to, and tearing down the agent service."""

from __future__ import annotations

import asyncio
import contextlib
import re

import structlog

from tether.client import OpencodeClient
from tether.errors import ServerBootstrapError
from tether.models.config import ServerConfig

_logger = structlog.get_logger("tether.server")

_LISTENING_RE = re.compile(r"listening on\s+(https?://\S+)", re.IGNORECASE)
_TERMINATE_TIMEOUT_SECS = 5.0


class ServerHandle:
    """
    A client bound to a running service, plus the process if we launched it.

    ``close()`` is idempotent: the first call closes the client and stops an
    owned process, later calls do nothing.
    """

    def __init__(
        self,
        url: str,
        client: OpencodeClient,
        process: asyncio.subprocess.Process | None = None,
        drain_task: asyncio.Task[None] | None = None,
    ) -> None:
        self.url = url
        self.client = client
        self.process = process
        self._drain_task = drain_task
        self._closed = False

    @property
    def owns_process(self) -> bool:
        return self.process is not None

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.client.aclose()
        finally:
            if self.process is not None:
                await _stop_process(self.process)
            if self._drain_task is not None:
                self._drain_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._drain_task
        _logger.debug("server_closed", url=self.url, owned=self.owns_process)


async def _stop_process(process: asyncio.subprocess.Process) -> None:
    """Terminate, then kill if it does not exit in time."""
    if process.returncode is not None:
        return
    with contextlib.suppress(ProcessLookupError):
        process.terminate()
    try:
        await asyncio.wait_for(process.wait(), timeout=_TERMINATE_TIMEOUT_SECS)
    except TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()


async def _drain_output(stream: asyncio.StreamReader) -> None:
    while line := await stream.readline():
        _logger.debug("server_output", line=line.decode("utf-8", "replace").rstrip())


def connect_server(url: str, directory: str | None = None) -> ServerHandle:
    """Attach to an already running service. Closing the handle only closes the client."""
    return ServerHandle(url, OpencodeClient(url, directory=directory))


async def start_server(config: ServerConfig, directory: str | None = None) -> ServerHandle:
    """
    Launch ``<command> serve`` and wait for it to announce its URL.

    Raises:
        ServerBootstrapError: If the command cannot be started, exits early,
            or does not print a ``listening on <url>`` line within
            ``config.startup_timeout_secs``.
    """
    args = [config.command, "serve", f"--hostname={config.hostname}", f"--port={config.port}"]
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=directory,
        )
    except OSError as exc:
        raise ServerBootstrapError(f"Server bootstrap failed: {exc}") from exc

    stdout = process.stdout
    if stdout is None:
        await _stop_process(process)
        raise ServerBootstrapError("Server bootstrap failed: no stdout pipe")
    seen: list[str] = []

    async def wait_for_url() -> str:
        while line := await stdout.readline():
            text = line.decode("utf-8", "replace").rstrip()
            seen.append(text)
            match = _LISTENING_RE.search(text)
            if match:
                return match.group(1).rstrip("/")
        code = await process.wait()
        raise ServerBootstrapError(
            f"Server exited with code {code} before listening: {' | '.join(seen[-5:])}"
        )

    try:
        url = await asyncio.wait_for(wait_for_url(), timeout=config.startup_timeout_secs)
    except TimeoutError as exc:
        await _stop_process(process)
        raise ServerBootstrapError(
            f"Timeout waiting for server to start after {config.startup_timeout_secs}s"
        ) from exc
    except BaseException:
        await _stop_process(process)
        raise

    drain_task = asyncio.create_task(_drain_output(stdout))
    _logger.info("server_started", url=url, pid=process.pid)
    return ServerHandle(url, OpencodeClient(url, directory=directory), process, drain_task)
