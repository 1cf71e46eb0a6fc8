"""snek: session context for AI code completion.

Keeps an immutable snapshot of the active session (limits, snippet list,
markdown notes and referenced source files) in sync with the .snek/
directory, so completion requests can read it without ever waiting on the
filesystem watcher.
"""

__version__ = "0.1.0"

# Core
from .snapshot import Snapshot, SnapshotStore
from .session_schema import Limits, Snippet
from .session_io import (
    ActiveSessionError,
    SessionReadError,
    WorkspaceNotFoundError,
    load_snapshot,
    resolve_active_session,
)
from .watcher import SessionWatcher, WatcherError

# Collaborators
from .config import SnekConfig
from .document_store import DocumentStore
from .model_client import CompletionClient, CompletionError
from .service import ContextService

__all__ = [
    # Core
    "Snapshot",
    "SnapshotStore",
    "Limits",
    "Snippet",
    "ActiveSessionError",
    "SessionReadError",
    "WorkspaceNotFoundError",
    "load_snapshot",
    "resolve_active_session",
    "SessionWatcher",
    "WatcherError",
    # Collaborators
    "SnekConfig",
    "DocumentStore",
    "CompletionClient",
    "CompletionError",
    "ContextService",
]
