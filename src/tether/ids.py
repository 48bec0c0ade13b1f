"""Identifier generation."""

from __future__ import annotations

from ulid import ULID


def make_id(prefix: str) -> str:
    """
    Generate a ULID-based sortable identifier.

    The ULID's leading 48 bits are the millisecond timestamp and the rest is
    random, so ids sort by creation time.

    Args:
        prefix: Record kind, as the agent service spells it (``"ses"``, ``"msg"``, ``"prt"``).

    Returns:
        ID string in the format ``"{prefix}_{ulid}"``.
    """
    return f"{prefix}_{ULID()}"
