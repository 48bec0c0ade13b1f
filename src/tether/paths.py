"""Filesystem locations used by the agent service."""

from __future__ import annotations

import os
from pathlib import Path


def get_storage_path() -> str:
    """
    Return the agent service's record storage root.

    ``$XDG_DATA_HOME/opencode/storage`` when ``XDG_DATA_HOME`` is set,
    otherwise ``~/.local/share/opencode/storage``.
    """
    data_home = os.environ.get("XDG_DATA_HOME")
    base = Path(data_home) if data_home else Path.home() / ".local" / "share"
    return str(base / "opencode" / "storage")


def normalize_workspace_path(workspace_path: str) -> str:
    """Absolute path without a trailing separator, for directory comparisons."""
    resolved = os.path.abspath(os.path.expanduser(workspace_path))
    if len(resolved) > 1 and resolved.endswith(os.sep):
        resolved = resolved[:-1]
    return resolved
