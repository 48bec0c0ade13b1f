"""Tests for server handles, output sinks and logging setup."""

from __future__ import annotations

import asyncio
import io
import sys

import pytest
import structlog

from tether.errors import ServerBootstrapError
from tether.log import configure_logging
from tether.models.config import ServerConfig
from tether.output import ConsoleSink, NullSink, OutputSink
from tether.server import ServerHandle, connect_server, start_server
from tests.conftest import FakeAgentService


class TestServerHandle:
    async def test_close_is_idempotent(self):
        """Closing twice closes the client once."""
        client = FakeAgentService([])
        handle = ServerHandle("http://127.0.0.1:4096", client)
        await handle.close()
        await handle.close()
        assert handle.closed
        assert client.aclose_calls == 1
        assert not handle.owns_process

    async def test_connect_server_does_not_own_process(self):
        """An attached handle owns no process and keeps the directory."""
        handle = connect_server("http://127.0.0.1:4096", "/work/repo")
        assert not handle.owns_process
        assert handle.client.directory == "/work/repo"
        await handle.close()


class TestStartServer:
    async def test_missing_command(self):
        """A command that cannot be executed is a bootstrap failure."""
        config = ServerConfig(command="/nonexistent/tether-agent-binary")
        with pytest.raises(ServerBootstrapError):
            await start_server(config)

    async def test_early_exit(self):
        """A process that exits before announcing a URL is a bootstrap failure."""
        config = ServerConfig(command=sys.executable, startup_timeout_secs=10)
        # ``python serve --hostname=...`` fails immediately: no such script.
        with pytest.raises(ServerBootstrapError, match="exited with code"):
            await start_server(config)

    async def test_missing_stdout_pipe(self, monkeypatch):
        """A process without a stdout pipe is stopped and reported as a bootstrap failure."""

        class PipelessProcess:
            stdout = None
            returncode = None
            pid = 4242
            terminated = False

            def terminate(self):
                self.terminated = True
                self.returncode = -15

            async def wait(self):
                return self.returncode

        process = PipelessProcess()

        async def fake_exec(*args, **kwargs):
            return process

        monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)
        with pytest.raises(ServerBootstrapError, match="no stdout pipe"):
            await start_server(ServerConfig())
        assert process.terminated


class TestOutputSinks:
    def test_console_sink(self):
        """The console sink writes text and labelled tool lines."""
        stream = io.StringIO()
        sink = ConsoleSink(stream)
        sink.text("Done.\n")
        sink.tool("bash", "pytest -q")
        sink.tool("custom_tool", "")
        assert stream.getvalue().splitlines() == ["Done.", "| Bash    pytest -q", "| custom_tool"]

    def test_sinks_satisfy_protocol(self):
        """Both sinks satisfy OutputSink."""
        assert isinstance(ConsoleSink(io.StringIO()), OutputSink)
        assert isinstance(NullSink(), OutputSink)


class TestConfigureLogging:
    def test_json_rendering(self, capsys):
        """JSON rendering writes one object per event to stderr."""
        configure_logging("DEBUG", json=True)
        try:
            structlog.get_logger("tether.test").info("hello_event", answer=42)
            err = capsys.readouterr().err
            assert '"event": "hello_event"' in err
            assert '"answer": 42' in err
        finally:
            structlog.reset_defaults()

    def test_level_filtering(self, capsys):
        """Events below the configured level are dropped."""
        configure_logging("WARNING", json=True)
        try:
            structlog.get_logger("tether.test").info("quiet_event")
            assert "quiet_event" not in capsys.readouterr().err
        finally:
            structlog.reset_defaults()
