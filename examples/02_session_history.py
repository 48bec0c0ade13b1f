"""
Example 02: Session History
===========================

Browses what the agent has done in the current directory, straight from the
service's on-disk storage (no service needs to be running):
- Listing main sessions from the last week
- Full-text search across messages and tool output
- Per-session message and todo statistics

    python examples/02_session_history.py "failing test"
"""

import asyncio
import os
import sys
from datetime import UTC, datetime, timedelta


async def main(query: str) -> None:
    from tether import LocalBackend, get_session_info, get_storage_path, list_sessions, search_sessions

    backend = LocalBackend(get_storage_path())
    directory = os.getcwd()

    since = datetime.now(UTC) - timedelta(days=7)
    sessions = await list_sessions(backend, directory, limit=10, from_date=since)
    print(f"=== {len(sessions)} sessions updated in the last 7 days ===")
    for summary in sessions:
        updated = datetime.fromtimestamp(summary.updated_at / 1000, tz=UTC)
        agents = ", ".join(summary.agents) or "-"
        print(f"{summary.id}  {updated:%Y-%m-%d %H:%M}  {summary.message_count:>3} msgs  [{agents}]  {summary.title}")

    print(f"\n=== Matches for {query!r} ===")
    for result in await search_sessions(backend, query, directory, limit=10):
        for match in result.matches:
            print(f"{result.session_id} {match.role:<9} {match.excerpt}")

    if sessions:
        detail = await get_session_info(backend, sessions[0].id)
        if detail is not None:
            print(
                f"\nLatest session: {detail.message_count} messages, "
                f"{detail.completed_todos}/{detail.todo_count} todos completed"
            )


if __name__ == "__main__":
    asyncio.run(main(" ".join(sys.argv[1:]) or "test"))
