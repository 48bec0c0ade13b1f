"""
Example 01: Run a Turn
======================

Demonstrates one complete turn against the agent service:
- Loading TetherConfig from TETHER_* environment variables
- Attaching to a running service, or launching one per turn
- Reading the AgentResult (exit code, tokens, created PRs)
- Appending a run summary and pruning old sessions afterwards

Run against an already running `opencode serve`:
    TETHER_SERVER_URL=http://127.0.0.1:4096 python examples/01_run_turn.py "Explain this repo"

Or let tether launch the service itself:
    python examples/01_run_turn.py "Explain this repo"
"""

import asyncio
import os
import sys


async def main(prompt: str) -> int:
    from tether import (
        LocalBackend,
        RunSummary,
        TetherConfig,
        TurnOrchestrator,
        configure_logging,
        connect_server,
        prune_sessions,
        write_session_summary,
    )

    config = TetherConfig.from_env()
    configure_logging(config.log_level)
    directory = os.getcwd()

    server = connect_server(config.server_url, directory) if config.server_url else None
    orchestrator = TurnOrchestrator(
        config.execution,
        directory=directory,
        server=server,
        server_config=config.server,
    )

    try:
        result = await orchestrator.run(prompt)
    finally:
        if server is not None:
            await server.close()

    print(f"\nExit code: {result.exit_code} ({result.duration_ms} ms)")
    if result.token_usage is not None:
        print(f"Tokens: {result.token_usage.input} in / {result.token_usage.output} out")
    for url in result.prs_created:
        print(f"PR: {url}")
    if result.error:
        print(f"Error: {result.error}")

    backend = LocalBackend(config.storage_path)
    if result.session_id is not None:
        await write_session_summary(
            backend,
            result.session_id,
            RunSummary(
                event_type="manual",
                repo=os.path.basename(directory),
                ref="HEAD",
                run_id="local",
                duration_secs=result.duration_ms // 1000,
                session_ids=[result.session_id],
                created_prs=result.prs_created,
                created_commits=result.commits_created,
                token_usage=result.token_usage,
            ),
        )

    pruned = await prune_sessions(backend, directory, config.retention)
    print(f"Pruned {pruned.pruned_count} sessions, {pruned.remaining_count} remain")
    return result.exit_code


if __name__ == "__main__":
    text = " ".join(sys.argv[1:]) or "Summarise the layout of this repository."
    sys.exit(asyncio.run(main(text)))
