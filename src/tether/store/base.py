"""Backend contract shared by the local-file and remote record stores."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import ClassVar, Literal

from tether.models.records import (
    MessageWithParts,
    ProjectInfo,
    SessionInfo,
    TodoItem,
)

BackendKind = Literal["local", "remote"]

SUMMARY_AGENT = "tether"
SUMMARY_PROVIDER_ID = "tether"
SUMMARY_MODEL_ID = "run-summary"


class SessionBackend(ABC):
    """
    Uniform access to the agent service's session history.

    Absence is never an error: a missing project, session, message list or
    todo file yields None or an empty list. Other storage failures are logged
    by the implementation and absorbed the same way, so callers never need a
    try/except around a backend call.

    Components that touch storage take a backend as an explicit argument;
    nothing in tether builds one implicitly.
    """

    kind: ClassVar[BackendKind]

    @abstractmethod
    async def find_project(self, directory: str) -> ProjectInfo | None:
        """Return the project whose worktree is ``directory``, or None."""

    @abstractmethod
    async def list_sessions(self, project: ProjectInfo) -> list[SessionInfo]:
        """All sessions of a project, children included, in no particular order."""

    @abstractmethod
    async def get_session(self, session_id: str) -> SessionInfo | None: ...

    @abstractmethod
    async def get_messages(self, session_id: str) -> list[MessageWithParts]:
        """Messages with their parts, sorted by ``time.created``."""

    @abstractmethod
    async def get_todos(self, session_id: str) -> list[TodoItem]: ...

    @abstractmethod
    async def delete_session(self, session_id: str) -> int:
        """
        Delete one session and its messages, parts and todos.

        Returns:
            Bytes freed where the backend can measure it, else 0. A failed or
            partial delete reports what was actually freed.
        """

    @abstractmethod
    async def create_summary_message(self, session_id: str, text: str) -> bool:
        """
        Append a synthetic user message holding ``text`` to a session.

        Returns:
            True if the message was written.
        """

    @abstractmethod
    async def find_latest_session(
        self, directory: str, after_ms: int
    ) -> SessionInfo | None:
        """The most recently created root session started after ``after_ms``."""


def latest_by_created(sessions: list[SessionInfo]) -> SessionInfo | None:
    """Reduce to the session with the greatest ``time.created``. Ties keep the first seen."""
    latest: SessionInfo | None = None
    for session in sessions:
        if latest is None or session.time.created > latest.time.created:
            latest = session
    return latest
