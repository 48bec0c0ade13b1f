"""Shared fixtures for tether tests."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from tether.models.records import SessionInfo
from tether.store.local import LocalBackend

DAY_MS = 24 * 60 * 60 * 1000
NOW_MS = 1_760_000_000_000
WORKTREE = "/work/repo"
PROJECT_ID = "prj_repo"


# ── On-disk storage tree ───────────────────────────────────────────────────────


class StorageTree:
    """Writes records in the agent service's on-disk layout."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def write(self, relative: str, data: Any) -> Path:
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    def project(self, project_id: str = PROJECT_ID, worktree: str = WORKTREE) -> dict[str, Any]:
        data = {"id": project_id, "worktree": worktree, "vcs": "git", "time": {"created": 1}}
        self.write(f"project/{project_id}.json", data)
        return data

    def session(
        self,
        session_id: str,
        *,
        updated: int = NOW_MS,
        created: int | None = None,
        parent_id: str | None = None,
        project_id: str = PROJECT_ID,
        title: str = "",
    ) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": session_id,
            "version": "1.0.0",
            "projectID": project_id,
            "directory": WORKTREE,
            "title": title or f"Session {session_id}",
            "time": {"created": updated if created is None else created, "updated": updated},
        }
        if parent_id is not None:
            data["parentID"] = parent_id
        self.write(f"session/{project_id}/{session_id}.json", data)
        return data

    def message(
        self,
        session_id: str,
        message_id: str,
        *,
        role: str = "user",
        created: int = NOW_MS,
        agent: str = "build",
    ) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": message_id,
            "sessionID": session_id,
            "role": role,
            "time": {"created": created},
            "agent": agent,
        }
        if role == "assistant":
            data.update(
                {
                    "parentID": "msg_parent",
                    "modelID": "claude-sonnet",
                    "providerID": "anthropic",
                    "mode": "build",
                    "cost": 0.01,
                    "tokens": {"input": 10, "output": 5, "reasoning": 0, "cache": {"read": 0, "write": 0}},
                }
            )
        self.write(f"message/{session_id}/{message_id}.json", data)
        return data

    def text_part(self, session_id: str, message_id: str, part_id: str, text: str) -> dict[str, Any]:
        data = {
            "id": part_id,
            "sessionID": session_id,
            "messageID": message_id,
            "type": "text",
            "text": text,
        }
        self.write(f"part/{message_id}/{part_id}.json", data)
        return data

    def tool_part(
        self,
        session_id: str,
        message_id: str,
        part_id: str,
        *,
        tool: str = "bash",
        output: str = "",
        status: str = "completed",
    ) -> dict[str, Any]:
        state: dict[str, Any] = {"status": status, "input": {"command": "ls"}}
        if status == "completed":
            state.update({"output": output, "title": "ls", "metadata": {}, "time": {"start": 1, "end": 2}})
        data = {
            "id": part_id,
            "sessionID": session_id,
            "messageID": message_id,
            "type": "tool",
            "callID": f"call_{part_id}",
            "tool": tool,
            "state": state,
        }
        self.write(f"part/{message_id}/{part_id}.json", data)
        return data

    def todos(self, session_id: str, items: list[dict[str, Any]]) -> None:
        self.write(f"todo/{session_id}.json", items)


@pytest.fixture
def storage(tmp_path):
    """Empty storage tree under a temp directory."""
    return StorageTree(tmp_path / "storage")


@pytest.fixture
def backend(storage):
    """LocalBackend over the temp storage tree."""
    return LocalBackend(storage.root)


# ── Fake agent service ─────────────────────────────────────────────────────────


class FakeSubscription:
    """In-memory event stream. ``end()`` finishes iteration."""

    def __init__(self, events: list[dict[str, Any]] | None = None) -> None:
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        for event in events or []:
            self._queue.put_nowait(event)
        self.close_calls = 0
        self.releases = 0
        self.closed = False

    def push(self, event: dict[str, Any]) -> None:
        self._queue.put_nowait(event)

    def end(self) -> None:
        self._queue.put_nowait(None)

    def __aiter__(self):
        return self._events()

    async def _events(self):
        while True:
            item = await self._queue.get()
            if item is None:
                return
            yield item

    async def aclose(self) -> None:
        self.close_calls += 1
        if self.closed:
            return
        self.closed = True
        self.releases += 1
        self._queue.put_nowait(None)


@dataclass
class AttemptScript:
    """What the fake service does in response to one prompt."""

    events: list[dict[str, Any]] = field(default_factory=list)
    statuses: list[dict[str, Any]] = field(default_factory=lambda: [{"type": "busy"}])
    prompt_error: Exception | None = None


class FakeAgentService:
    """Stands in for OpencodeClient in orchestrator tests."""

    def __init__(self, attempts: list[AttemptScript], session_id: str = "ses_fake") -> None:
        self.attempts = attempts
        self.session_id = session_id
        self.prompts: list[dict[str, Any]] = []
        self.subscriptions: list[FakeSubscription] = []
        self.create_error: Exception | None = None
        self.aclose_calls = 0
        self._statuses: list[dict[str, Any]] = [{"type": "busy"}]

    async def create_session(self, title: str | None = None) -> SessionInfo:
        if self.create_error is not None:
            raise self.create_error
        return SessionInfo(id=self.session_id, directory=WORKTREE)

    async def subscribe_events(self) -> FakeSubscription:
        subscription = FakeSubscription()
        self.subscriptions.append(subscription)
        return subscription

    async def prompt_async(self, session_id: str, body: dict[str, Any], directory: str | None = None) -> None:
        self.prompts.append(body)
        script = self.attempts[len(self.prompts) - 1]
        if script.prompt_error is not None:
            raise script.prompt_error
        self._statuses = list(script.statuses)
        for event in script.events:
            self.subscriptions[-1].push(event)

    async def session_status(self, directory: str | None = None) -> dict[str, Any]:
        status = self._statuses.pop(0) if len(self._statuses) > 1 else self._statuses[0]
        return {self.session_id: status}

    async def aclose(self) -> None:
        self.aclose_calls += 1


class RecordingSink:
    def __init__(self) -> None:
        self.texts: list[str] = []
        self.tools: list[tuple[str, str]] = []

    def text(self, content: str) -> None:
        self.texts.append(content)

    def tool(self, name: str, title: str) -> None:
        self.tools.append((name, title))


@pytest.fixture
def sink():
    """Output sink that records what it receives."""
    return RecordingSink()


# ── Event payload builders ─────────────────────────────────────────────────────


def text_event(session_id: str, text: str, *, ended: bool = True, part_id: str = "prt_t1") -> dict[str, Any]:
    time_info: dict[str, Any] = {"start": 1}
    if ended:
        time_info["end"] = 2
    return {
        "type": "message.part.updated",
        "properties": {
            "part": {
                "id": part_id,
                "sessionID": session_id,
                "messageID": "msg_a1",
                "type": "text",
                "text": text,
                "time": time_info,
            }
        },
    }


def bash_event(session_id: str, command: str, output: str, *, part_id: str = "prt_b1") -> dict[str, Any]:
    return {
        "type": "message.part.updated",
        "properties": {
            "part": {
                "id": part_id,
                "sessionID": session_id,
                "messageID": "msg_a1",
                "type": "tool",
                "callID": f"call_{part_id}",
                "tool": "bash",
                "state": {
                    "status": "completed",
                    "input": {"command": command},
                    "output": output,
                    "title": command,
                    "metadata": {},
                    "time": {"start": 1, "end": 2},
                },
            }
        },
    }


def tokens_event(session_id: str, input_tokens: int, *, cost: float = 0.1, model: str = "claude-sonnet") -> dict[str, Any]:
    return {
        "type": "message.updated",
        "properties": {
            "info": {
                "id": "msg_a1",
                "sessionID": session_id,
                "role": "assistant",
                "time": {"created": 1},
                "parentID": "msg_u1",
                "modelID": model,
                "providerID": "anthropic",
                "mode": "build",
                "cost": cost,
                "tokens": {"input": input_tokens, "output": 5, "reasoning": 0, "cache": {"read": 1, "write": 2}},
            }
        },
    }


def error_event(session_id: str, message: str) -> dict[str, Any]:
    return {
        "type": "session.error",
        "properties": {"sessionID": session_id, "error": {"name": "UnknownError", "data": {"message": message}}},
    }


def idle_event(session_id: str) -> dict[str, Any]:
    return {"type": "session.idle", "properties": {"sessionID": session_id}}
