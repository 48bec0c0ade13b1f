"""
Local-file backend over the agent service's storage directory.

Layout under ``root_path``::

    project/{projectID}.json
    session/{projectID}/{sessionID}.json
    message/{sessionID}/{messageID}.json
    part/{messageID}/{partID}.json
    todo/{sessionID}.json

Records are created lazily by the service, so any of these may be missing.
Blocking filesystem work runs in a worker thread via ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
import time
from pathlib import Path
from typing import Any, ClassVar

import structlog

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
    SUMMARY_AGENT,
    SUMMARY_MODEL_ID,
    SUMMARY_PROVIDER_ID,
    BackendKind,
    SessionBackend,
    latest_by_created,
)


def _atomic_write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp_")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        Path(tmp_path).replace(path)
    except Exception:
        Path(tmp_path).unlink(missing_ok=True)
        raise


class LocalBackend(SessionBackend):
    """Reads and deletes records directly on disk."""

    kind: ClassVar[BackendKind] = "local"

    def __init__(self, root_path: str | Path) -> None:
        self.root_path = Path(root_path).expanduser()
        self._logger = structlog.get_logger("tether.store.local")

    def __repr__(self) -> str:
        return f"LocalBackend({str(self.root_path)!r})"

    # ── Low-level helpers (run in worker threads) ──────────────────────────────

    def _read_json(self, path: Path) -> Any | None:
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            self._logger.warning("record_read_failed", path=str(path), error=str(exc))
            return None

    def _json_files(self, directory: Path) -> list[Path]:
        try:
            return sorted(p for p in directory.iterdir() if p.suffix == ".json")
        except FileNotFoundError:
            return []
        except OSError as exc:
            self._logger.warning("record_dir_unreadable", path=str(directory), error=str(exc))
            return []

    def _remove_file(self, path: Path) -> int:
        try:
            size = path.stat().st_size
            path.unlink()
        except FileNotFoundError:
            return 0
        except OSError as exc:
            self._logger.warning("record_delete_failed", path=str(path), error=str(exc))
            return 0
        return size

    def _remove_dir(self, directory: Path) -> None:
        try:
            directory.rmdir()
        except FileNotFoundError:
            return
        except OSError as exc:
            self._logger.debug("record_dir_not_removed", path=str(directory), error=str(exc))

    def _session_file(self, session_id: str) -> Path | None:
        for project_dir in self._subdirs(self.root_path / "session"):
            candidate = project_dir / f"{session_id}.json"
            if candidate.is_file():
                return candidate
        return None

    def _subdirs(self, directory: Path) -> list[Path]:
        try:
            return sorted(p for p in directory.iterdir() if p.is_dir())
        except FileNotFoundError:
            return []
        except OSError as exc:
            self._logger.warning("record_dir_unreadable", path=str(directory), error=str(exc))
            return []

    # ── Sync implementations ───────────────────────────────────────────────────

    def _find_project_sync(self, directory: str) -> ProjectInfo | None:
        target = normalize_workspace_path(directory)
        for path in self._json_files(self.root_path / "project"):
            data = self._read_json(path)
            if not isinstance(data, dict):
                continue
            try:
                project = ProjectInfo.model_validate(data)
            except ValueError:
                self._logger.warning("record_invalid", path=str(path))
                continue
            for candidate in (project.worktree, project.path):
                if candidate and normalize_workspace_path(candidate) == target:
                    return project
        return None

    def _list_sessions_sync(self, project_id: str) -> list[SessionInfo]:
        sessions: list[SessionInfo] = []
        for path in self._json_files(self.root_path / "session" / project_id):
            data = self._read_json(path)
            if not isinstance(data, dict):
                continue
            try:
                sessions.append(SessionInfo.model_validate(data))
            except ValueError:
                self._logger.warning("record_invalid", path=str(path))
        return sessions

    def _get_session_sync(self, session_id: str) -> SessionInfo | None:
        path = self._session_file(session_id)
        if path is None:
            return None
        data = self._read_json(path)
        if not isinstance(data, dict):
            return None
        try:
            return SessionInfo.model_validate(data)
        except ValueError:
            self._logger.warning("record_invalid", path=str(path))
            return None

    def _get_messages_sync(self, session_id: str) -> list[MessageWithParts]:
        messages: list[MessageWithParts] = []
        for path in self._json_files(self.root_path / "message" / session_id):
            info = parse_message(self._read_json(path))
            if info is None:
                continue
            parts = []
            for part_path in self._json_files(self.root_path / "part" / info.id):
                part = parse_part(self._read_json(part_path))
                if part is not None:
                    parts.append(part)
            parts.sort(key=lambda p: p.id)
            messages.append(MessageWithParts(info=info, parts=parts))
        messages.sort(key=lambda m: m.created)
        return messages

    def _get_todos_sync(self, session_id: str) -> list[TodoItem]:
        data = self._read_json(self.root_path / "todo" / f"{session_id}.json")
        if not isinstance(data, list):
            return []
        todos: list[TodoItem] = []
        for item in data:
            try:
                todos.append(TodoItem.model_validate(item))
            except ValueError:
                continue
        return todos

    def _delete_session_sync(self, session_id: str) -> int:
        freed = 0
        message_dir = self.root_path / "message" / session_id
        for message_path in self._json_files(message_dir):
            part_dir = self.root_path / "part" / message_path.stem
            for part_path in self._json_files(part_dir):
                freed += self._remove_file(part_path)
            self._remove_dir(part_dir)
            freed += self._remove_file(message_path)
        self._remove_dir(message_dir)
        freed += self._remove_file(self.root_path / "todo" / f"{session_id}.json")
        session_path = self._session_file(session_id)
        if session_path is not None:
            freed += self._remove_file(session_path)
        return freed

    def _create_summary_message_sync(self, session_id: str, text: str) -> bool:
        session_path = self._session_file(session_id)
        if session_path is None:
            self._logger.warning("summary_session_missing", session_id=session_id)
            return False
        now = int(time.time() * 1000)
        message_id = make_id("msg")
        part_id = make_id("prt")
        message = {
            "id": message_id,
            "sessionID": session_id,
            "role": "user",
            "time": {"created": now},
            "agent": SUMMARY_AGENT,
            "model": {"providerID": SUMMARY_PROVIDER_ID, "modelID": SUMMARY_MODEL_ID},
        }
        part = {
            "id": part_id,
            "sessionID": session_id,
            "messageID": message_id,
            "type": "text",
            "text": text,
        }
        _atomic_write(
            self.root_path / "message" / session_id / f"{message_id}.json",
            json.dumps(message, indent=2),
        )
        _atomic_write(
            self.root_path / "part" / message_id / f"{part_id}.json",
            json.dumps(part, indent=2),
        )
        session = self._read_json(session_path)
        if isinstance(session, dict):
            times = session.get("time")
            if not isinstance(times, dict):
                times = session["time"] = {}
            times["updated"] = now
            _atomic_write(session_path, json.dumps(session, indent=2))
        return True

    # ── SessionBackend ─────────────────────────────────────────────────────────

    async def find_project(self, directory: str) -> ProjectInfo | None:
        return await asyncio.to_thread(self._find_project_sync, directory)

    async def list_sessions(self, project: ProjectInfo) -> list[SessionInfo]:
        return await asyncio.to_thread(self._list_sessions_sync, project.id)

    async def get_session(self, session_id: str) -> SessionInfo | None:
        return await asyncio.to_thread(self._get_session_sync, session_id)

    async def get_messages(self, session_id: str) -> list[MessageWithParts]:
        return await asyncio.to_thread(self._get_messages_sync, session_id)

    async def get_todos(self, session_id: str) -> list[TodoItem]:
        return await asyncio.to_thread(self._get_todos_sync, session_id)

    async def delete_session(self, session_id: str) -> int:
        freed = await asyncio.to_thread(self._delete_session_sync, session_id)
        self._logger.debug("session_deleted", session_id=session_id, freed_bytes=freed)
        return freed

    async def create_summary_message(self, session_id: str, text: str) -> bool:
        try:
            return await asyncio.to_thread(self._create_summary_message_sync, session_id, text)
        except OSError as exc:
            self._logger.warning("summary_write_failed", session_id=session_id, error=str(exc))
            return False

    async def find_latest_session(self, directory: str, after_ms: int) -> SessionInfo | None:
        project = await self.find_project(directory)
        if project is None:
            return None
        sessions = await self.list_sessions(project)
        candidates = [s for s in sessions if not s.is_child and s.time.created > after_ms]
        return latest_by_created(candidates)
