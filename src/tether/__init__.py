"""
Tether: turn execution and session history for a remote coding-agent service.

Primary entry points::

    from tether import TurnOrchestrator, ExecutionConfig, LocalBackend, prune_sessions

    result = await TurnOrchestrator(ExecutionConfig(), directory=repo).run(prompt)
    pruned = await prune_sessions(LocalBackend(get_storage_path()), repo)
"""

from tether.client import EventSubscription, OpencodeClient
from tether.errors import (
    ErrorInfo,
    RemoteAPIError,
    ServerBootstrapError,
    SessionCreateError,
    TetherError,
)
from tether.ids import make_id
from tether.log import configure_logging
from tether.models import (
    AgentResult,
    ExecutionConfig,
    ModelRef,
    PollConfig,
    PruneResult,
    RetentionConfig,
    RetryConfig,
    ServerConfig,
    SessionDetail,
    SessionSearchResult,
    SessionSummary,
    TetherConfig,
)
from tether.output import ConsoleSink, OutputSink
from tether.paths import get_storage_path
from tether.runner import TurnOrchestrator
from tether.server import ServerHandle, connect_server, start_server
from tether.sessions import (
    RunSummary,
    get_session_info,
    list_sessions,
    prune_sessions,
    search_sessions,
    write_session_summary,
)
from tether.store import LocalBackend, RemoteBackend, SessionBackend

__version__ = "0.1.0"

__all__ = [
    # Core
    "TurnOrchestrator",
    "make_id",
    "configure_logging",
    "get_storage_path",
    # Config
    "TetherConfig",
    "ExecutionConfig",
    "RetentionConfig",
    "PollConfig",
    "RetryConfig",
    "ServerConfig",
    "ModelRef",
    # Results
    "AgentResult",
    "PruneResult",
    "SessionSummary",
    "SessionSearchResult",
    "SessionDetail",
    # Service access
    "OpencodeClient",
    "EventSubscription",
    "ServerHandle",
    "start_server",
    "connect_server",
    "OutputSink",
    "ConsoleSink",
    # Storage
    "SessionBackend",
    "LocalBackend",
    "RemoteBackend",
    # Sessions
    "list_sessions",
    "search_sessions",
    "get_session_info",
    "prune_sessions",
    "RunSummary",
    "write_session_summary",
    # Errors
    "TetherError",
    "RemoteAPIError",
    "SessionCreateError",
    "ServerBootstrapError",
    "ErrorInfo",
]
