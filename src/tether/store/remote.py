"""Remote backend: the same record operations, proxied through the service API."""

from __future__ import annotations

from typing import Any, ClassVar

import httpx
import structlog

from tether.client import OpencodeClient
from tether.errors import RemoteAPIError
from tether.ids import make_id
from tether.models.records import (
    MessageWithParts,
    ProjectInfo,
    SessionInfo,
    TodoItem,
    parse_message,
    parse_part,
)
from tether.paths import normalize_workspace_path
from tether.store.base import (
    BackendKind,
    SessionBackend,
    latest_by_created,
)

_RemoteFailure = (httpx.HTTPError, RemoteAPIError)

LATEST_SESSION_BATCH = 10


def _sessions(raw: list[dict[str, Any]]) -> list[SessionInfo]:
    sessions: list[SessionInfo] = []
    for item in raw:
        try:
            sessions.append(SessionInfo.model_validate(item))
        except ValueError:
            continue
    return sessions


class RemoteBackend(SessionBackend):
    """
    Proxies every operation through an :class:`OpencodeClient`.

    The service does not report sizes, so ``delete_session`` always frees 0
    bytes as far as this backend can tell.
    """

    kind: ClassVar[BackendKind] = "remote"

    def __init__(self, client: OpencodeClient, working_directory: str) -> None:
        self.client = client
        self.working_directory = working_directory
        self._logger = structlog.get_logger("tether.store.remote")

    def __repr__(self) -> str:
        return f"RemoteBackend({self.client.base_url!r}, {self.working_directory!r})"

    async def find_project(self, directory: str) -> ProjectInfo | None:
        target = normalize_workspace_path(directory)
        try:
            raw = await self.client.list_projects()
        except _RemoteFailure as exc:
            self._logger.warning("remote_project_list_failed", error=str(exc))
            return None
        for item in raw:
            try:
                project = ProjectInfo.model_validate(item)
            except ValueError:
                continue
            for candidate in (project.worktree, project.path):
                if candidate and normalize_workspace_path(candidate) == target:
                    return project
        return None

    async def list_sessions(self, project: ProjectInfo) -> list[SessionInfo]:
        directory = project.worktree or self.working_directory
        try:
            raw = await self.client.list_sessions(directory)
        except _RemoteFailure as exc:
            self._logger.warning("remote_session_list_failed", error=str(exc))
            return []
        return _sessions(raw)

    async def get_session(self, session_id: str) -> SessionInfo | None:
        try:
            raw = await self.client.get_session(session_id)
        except _RemoteFailure as exc:
            self._logger.warning("remote_session_get_failed", session_id=session_id, error=str(exc))
            return None
        if raw is None:
            return None
        try:
            return SessionInfo.model_validate(raw)
        except ValueError:
            return None

    async def get_messages(self, session_id: str) -> list[MessageWithParts]:
        try:
            raw = await self.client.session_messages(session_id)
        except _RemoteFailure as exc:
            self._logger.warning(
                "remote_session_messages_failed", session_id=session_id, error=str(exc)
            )
            return []
        messages: list[MessageWithParts] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            info = parse_message(item.get("info"))
            if info is None:
                continue
            raw_parts = item.get("parts")
            parts = [
                part
                for part in (parse_part(p) for p in (raw_parts if isinstance(raw_parts, list) else []))
                if part is not None
            ]
            messages.append(MessageWithParts(info=info, parts=parts))
        messages.sort(key=lambda m: m.created)
        return messages

    async def get_todos(self, session_id: str) -> list[TodoItem]:
        try:
            raw = await self.client.session_todos(session_id)
        except _RemoteFailure as exc:
            self._logger.warning("remote_session_todos_failed", session_id=session_id, error=str(exc))
            return []
        todos: list[TodoItem] = []
        for item in raw:
            try:
                todos.append(TodoItem.model_validate(item))
            except ValueError:
                continue
        return todos

    async def delete_session(self, session_id: str) -> int:
        try:
            await self.client.delete_session(session_id)
        except _RemoteFailure as exc:
            self._logger.warning("remote_session_delete_failed", session_id=session_id, error=str(exc))
            return 0
        self._logger.debug("session_deleted", session_id=session_id)
        return 0

    async def create_summary_message(self, session_id: str, text: str) -> bool:
        message_id = make_id("msg")
        # No agent/model: the service applies its defaults to no-reply messages.
        body = {
            "messageID": message_id,
            "noReply": True,
            "parts": [{"id": make_id("prt"), "type": "text", "text": text}],
        }
        try:
            await self.client.prompt(session_id, body)
        except _RemoteFailure as exc:
            self._logger.warning("summary_write_failed", session_id=session_id, error=str(exc))
            return False
        return True

    async def find_latest_session(self, directory: str, after_ms: int) -> SessionInfo | None:
        try:
            raw = await self.client.list_sessions(
                directory, start=after_ms, roots=True, limit=LATEST_SESSION_BATCH
            )
        except _RemoteFailure as exc:
            self._logger.warning("remote_session_list_failed", error=str(exc))
            return None
        candidates = [s for s in _sessions(raw) if not s.is_child]
        return latest_by_created(candidates)
