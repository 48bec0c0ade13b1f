"""Tests for retention pruning."""

from __future__ import annotations

from pathlib import Path

from tether.models.config import RetentionConfig
from tether.models.records import ProjectInfo, SessionInfo, SessionTime
from tether.sessions.retention import (
    collect_descendants,
    prune_sessions,
    select_main_sessions_to_keep,
)
from tether.store.base import SessionBackend
from tests.conftest import DAY_MS, NOW_MS, WORKTREE


def make_session(session_id: str, updated: int, parent_id: str | None = None) -> SessionInfo:
    return SessionInfo(id=session_id, parent_id=parent_id, time=SessionTime(created=updated, updated=updated))


def seed_old_sessions(storage, count: int, age_days: int = 10) -> None:
    """``count`` main sessions, all older than any test cutoff, ses_0 newest."""
    storage.project()
    for i in range(count):
        storage.session(f"ses_{i}", updated=NOW_MS - age_days * DAY_MS - i * 1000)


class TestSelectMainSessionsToKeep:
    def test_count_floor(self):
        """Old sessions beyond the newest N are not kept."""
        sessions = [make_session(f"s{i}", NOW_MS - 100 * DAY_MS - i) for i in range(5)]
        keep = select_main_sessions_to_keep(sessions, RetentionConfig(max_sessions=2, max_age_days=1), NOW_MS)
        assert keep == {"s0", "s1"}

    def test_age_floor(self):
        """Recent sessions are kept even beyond the count limit."""
        sessions = [make_session(f"s{i}", NOW_MS - i * 1000) for i in range(5)]
        keep = select_main_sessions_to_keep(sessions, RetentionConfig(max_sessions=1, max_age_days=1), NOW_MS)
        assert keep == {"s0", "s1", "s2", "s3", "s4"}

    def test_zero_limits_keep_nothing_old(self):
        """Zero limits keep no session at all."""
        sessions = [make_session("s0", NOW_MS - 1)]
        keep = select_main_sessions_to_keep(sessions, RetentionConfig(max_sessions=0, max_age_days=0), NOW_MS)
        assert keep == set()


class TestCollectDescendants:
    def test_walks_every_level(self):
        """Descendants are collected through every generation and no further."""
        sessions = [
            make_session("root", 0),
            make_session("child", 0, "root"),
            make_session("grandchild", 0, "child"),
            make_session("other", 0),
            make_session("other_child", 0, "other"),
        ]
        assert collect_descendants(["root"], sessions) == ["child", "grandchild"]

    def test_no_children(self):
        """A root without children has no descendants."""
        assert collect_descendants(["root"], [make_session("root", 0)]) == []


class TestPruneSessions:
    async def test_retention_floor(self, storage, backend):
        """5 old sessions with max 3 ⇒ the 2 oldest go, 3 remain."""
        seed_old_sessions(storage, 5)
        result = await prune_sessions(
            backend, WORKTREE, RetentionConfig(max_sessions=3, max_age_days=7), now_ms=NOW_MS
        )
        assert result.pruned_count == 2
        assert result.remaining_count == 3
        assert result.pruned_session_ids == ["ses_3", "ses_4"]
        assert await backend.get_session("ses_4") is None
        assert await backend.get_session("ses_2") is not None

    async def test_recent_sessions_survive(self, storage, backend):
        """Sessions within the age limit survive however many there are."""
        seed_old_sessions(storage, 3, age_days=1)
        result = await prune_sessions(
            backend, WORKTREE, RetentionConfig(max_sessions=1, max_age_days=7), now_ms=NOW_MS
        )
        assert result.pruned_count == 0
        assert result.remaining_count == 3

    async def test_children_cascade(self, storage, backend):
        """Children of an evicted session go with it and are counted."""
        seed_old_sessions(storage, 2)
        storage.session("ses_1_child", updated=NOW_MS, parent_id="ses_1")
        storage.session("ses_1_grandchild", updated=NOW_MS, parent_id="ses_1_child")
        storage.session("ses_0_child", updated=NOW_MS, parent_id="ses_0")

        result = await prune_sessions(
            backend, WORKTREE, RetentionConfig(max_sessions=1, max_age_days=7), now_ms=NOW_MS
        )

        assert result.pruned_session_ids == ["ses_1", "ses_1_child", "ses_1_grandchild"]
        assert result.pruned_count == 3
        assert result.remaining_count == 1
        assert await backend.get_session("ses_0_child") is not None

    async def test_freed_bytes_match_files(self, storage, backend):
        """Freed bytes equal the size of the removed files."""
        seed_old_sessions(storage, 2)
        storage.message("ses_1", "msg_1")
        storage.text_part("ses_1", "msg_1", "prt_1", "x" * 100)
        files = [
            storage.root / "session" / "prj_repo" / "ses_1.json",
            storage.root / "message" / "ses_1" / "msg_1.json",
            storage.root / "part" / "msg_1" / "prt_1.json",
        ]
        expected = sum(f.stat().st_size for f in files)

        result = await prune_sessions(
            backend, WORKTREE, RetentionConfig(max_sessions=1, max_age_days=7), now_ms=NOW_MS
        )

        assert result.freed_bytes == expected

    async def test_failed_deletes_still_counted(self, storage, backend, monkeypatch):
        """Unremovable files free nothing but the sessions are reported as pruned."""
        seed_old_sessions(storage, 5)

        def fail_unlink(self, missing_ok=False):
            raise PermissionError("read-only")

        monkeypatch.setattr(Path, "unlink", fail_unlink)
        result = await prune_sessions(
            backend, WORKTREE, RetentionConfig(max_sessions=3, max_age_days=7), now_ms=NOW_MS
        )
        assert result.pruned_count == 2
        assert result.freed_bytes == 0

    async def test_backend_exception_absorbed(self, storage, backend, monkeypatch):
        """A failing delete still counts the session as pruned with no bytes freed."""
        seed_old_sessions(storage, 3)

        async def explode(session_id: str) -> int:
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(backend, "delete_session", explode)
        result = await prune_sessions(
            backend, WORKTREE, RetentionConfig(max_sessions=1, max_age_days=7), now_ms=NOW_MS
        )
        assert result.pruned_count == 2
        assert result.freed_bytes == 0

    async def test_no_project(self, backend):
        """A directory without a project prunes nothing."""
        result = await prune_sessions(backend, WORKTREE, now_ms=NOW_MS)
        assert result.pruned_count == 0
        assert result.remaining_count == 0
        assert result.freed_bytes == 0

    async def test_only_children(self, storage, backend):
        """Child sessions are never ranked or pruned on their own."""
        storage.project()
        storage.session("ses_orphan", updated=0, parent_id="ses_gone")
        result = await prune_sessions(
            backend, WORKTREE, RetentionConfig(max_sessions=0, max_age_days=0), now_ms=NOW_MS
        )
        assert result.pruned_count == 0

    async def test_works_against_any_backend(self):
        """The policy only needs the backend contract."""

        class MemoryBackend(SessionBackend):
            kind = "remote"

            def __init__(self) -> None:
                self.sessions = [
                    make_session("new", NOW_MS),
                    make_session("old", NOW_MS - 90 * DAY_MS),
                ]
                self.deleted: list[str] = []

            async def find_project(self, directory):
                return ProjectInfo(id="prj", worktree=directory)

            async def list_sessions(self, project):
                return list(self.sessions)

            async def get_session(self, session_id):
                return None

            async def get_messages(self, session_id):
                return []

            async def get_todos(self, session_id):
                return []

            async def delete_session(self, session_id):
                self.deleted.append(session_id)
                return 0

            async def create_summary_message(self, session_id, text):
                return False

            async def find_latest_session(self, directory, after_ms):
                return None

        memory = MemoryBackend()
        result = await prune_sessions(
            memory, WORKTREE, RetentionConfig(max_sessions=1, max_age_days=30), now_ms=NOW_MS
        )
        assert memory.deleted == ["old"]
        assert result.remaining_count == 1
