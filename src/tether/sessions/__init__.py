"""Session directory, retention and summary writeback."""

from tether.sessions.directory import get_session_info, list_sessions, search_sessions
from tether.sessions.retention import prune_sessions
from tether.sessions.writeback import RunSummary, format_run_summary, write_session_summary

__all__ = [
    "RunSummary",
    "format_run_summary",
    "get_session_info",
    "list_sessions",
    "prune_sessions",
    "search_sessions",
    "write_session_summary",
]
