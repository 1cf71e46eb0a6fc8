"""
Context service: startup sequence and the request-side view of the snapshot.

Startup failures (no workspace, unreadable initial session, watcher cannot
be created) propagate to the caller. After startup, requests only ever call
``get_snapshot`` and never wait on the watcher.
"""

from __future__ import annotations

import logging
from pathlib import Path

from .config import SnekConfig
from .document_store import DocumentStore
from .model_client import CompletionClient
from .session_io import find_workspace_root, load_snapshot, resolve_active_session
from .snapshot import Snapshot, SnapshotStore
from .watcher import SessionWatcher

logger = logging.getLogger(__name__)


class ContextService:
    """Owns the snapshot store, the watcher and the request collaborators."""

    def __init__(
        self,
        root: Path,
        store: SnapshotStore,
        config: SnekConfig | None = None,
        client: CompletionClient | None = None,
        documents: DocumentStore | None = None,
    ):
        self.root = root
        self.store = store
        self.config = config or SnekConfig()
        self.client = client or CompletionClient(config=self.config)
        self.documents = documents or DocumentStore()
        self.watcher: SessionWatcher | None = None

    @classmethod
    def open(
        cls,
        start: Path | None = None,
        config: SnekConfig | None = None,
        create: bool = True,
        **kwargs,
    ) -> "ContextService":
        """
        Find the workspace and load the active session.

        A missing workspace is created with a default session unless
        ``create`` is False.

        Raises:
            WorkspaceNotFoundError: If there is no workspace and ``create`` is False
            ActiveSessionError: If active.json cannot be resolved
            SessionReadError: If the initial session cannot be read
        """
        config = config or SnekConfig.load()
        root = find_workspace_root(start, dirname=config.workspace_dirname, create=create)
        logger.info(f"Workspace root: {root}")

        session_dir = resolve_active_session(root)
        snapshot = load_snapshot(session_dir)
        logger.info(f"Loaded session: {snapshot.session_id} (version {snapshot.version})")

        return cls(root, SnapshotStore(snapshot), config=config, **kwargs)

    async def start(self) -> "ContextService":
        """Start the watch loop. Raises WatcherError if watching is impossible."""
        self.watcher = SessionWatcher(self.root, self.store, debounce_ms=self.config.debounce_ms)
        await self.watcher.start()
        return self

    async def stop(self) -> None:
        if self.watcher is not None:
            await self.watcher.stop()
            self.watcher = None

    def get_snapshot(self) -> Snapshot:
        """Current snapshot; instant and read-only."""
        return self.store.load()

    async def complete(self, uri: str, line: int, character: int) -> str | None:
        """
        Complete at a position in the active document.

        The snapshot is read once; the whole request uses that view even if
        the watcher publishes newer ones meanwhile.

        Returns:
            Completion text, or None if ``uri`` is not the active document
        """
        context = self.documents.get_context(uri, line, character)
        if context is None:
            logger.warning(f"Document not found in store: {uri}")
            return None
        prefix, suffix, language = context

        snapshot = self.get_snapshot()
        return await self.client.complete(snapshot, prefix, suffix, language)


__all__ = ["ContextService"]
