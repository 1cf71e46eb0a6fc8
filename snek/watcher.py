"""
Filesystem watcher that keeps the published Snapshot current.

The watch loop is the only writer to the SnapshotStore and the only owner
of watch registrations. watchdog's observer thread just forwards raw
paths into the loop's queue. After ``debounce_ms`` without new events the
pending changes are flushed: each flush step builds a new Snapshot and
publishes it with exactly one ``store`` call.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler

from .classifier import classify
from .debounce import DEFAULT_DEBOUNCE_MS, Action, ActionKind, PendingChanges
from .paths import canonical_path
from .session_io import CONTEXT_DIR, load_snapshot, resolve_active_session, snippet_paths
from .snapshot import Snapshot, SnapshotStore
from .updater import reload_contents, reload_snippets, update_markdown, update_sources
from .watch_set import ObserverBackend, WatchBackend, WatchSet

logger = logging.getLogger(__name__)

# Event types that never mean content changed
_IGNORED_EVENT_TYPES = {"opened", "closed_no_write"}


class WatcherError(Exception):
    """The filesystem watcher could not be created or started."""
    pass


def _event_path(raw: bytes | str) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw


class EventForwarder(FileSystemEventHandler):
    """Forwards paths from watchdog events to a callback."""

    def __init__(self, callback):
        super().__init__()
        self.callback = callback

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type in _IGNORED_EVENT_TYPES:
            return
        # A modified directory only means one of its children changed
        if event.is_directory and event.event_type == "modified":
            return
        self.callback(_event_path(event.src_path))
        # Atomic saves land as a move onto the real file
        dest_path = getattr(event, "dest_path", "")
        if dest_path:
            self.callback(_event_path(dest_path))


class SessionWatcher:
    """
    Background watch loop for the active session.

    Usage:
        watcher = SessionWatcher(root, store)
        await watcher.start()
        ...
        await watcher.stop()
    """

    def __init__(
        self,
        root: Path,
        store: SnapshotStore,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        backend: WatchBackend | None = None,
    ):
        """
        Args:
            root: Workspace root (.snek/ directory)
            store: Store holding the initially loaded snapshot
            debounce_ms: Quiet period before pending changes are flushed
            backend: Registration backend; a watchdog ObserverBackend by default
        """
        self.root = canonical_path(root)
        self.store = store
        self.debounce_seconds = debounce_ms / 1000
        self.backend = backend or ObserverBackend(EventForwarder(self.submit_threadsafe))
        self.watch_set = WatchSet(self.backend)
        self.pending = PendingChanges()
        self.session_dir = store.load().session_dir
        self._session_targets: set[Path] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[str] | None = None
        self._task: asyncio.Task | None = None
        self._flush_task: asyncio.Future | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> "SessionWatcher":
        """
        Register watches and spawn the watch loop on the running event loop.

        Raises:
            WatcherError: If the workspace root cannot be watched or the
                observer cannot be started
        """
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self.register()

        start = getattr(self.backend, "start", None)
        if start is not None:
            try:
                start()
            except (OSError, RuntimeError) as e:
                raise WatcherError(f"Failed to start filesystem observer: {e}") from e

        self._task = asyncio.create_task(self.run(), name="snek-watch-loop")
        logger.info(f"Watching {self.root} (session {self.session_dir.name})")
        return self

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        # A flush running in its worker thread still publishes and registers
        if self._flush_task is not None:
            await self._flush_task
            self._flush_task = None

        stop = getattr(self.backend, "stop", None)
        if stop is not None:
            stop()

    # -------------------------------------------------------------------------
    # Event intake
    # -------------------------------------------------------------------------

    def submit(self, path: str | Path) -> None:
        """Queue a raw path. Must be called on the event loop thread."""
        if self._queue is None:
            raise RuntimeError("SessionWatcher.start() has not been called")
        self._queue.put_nowait(str(path))

    def submit_threadsafe(self, path: str | Path) -> None:
        """Queue a raw path from another thread (the watchdog observer)."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self.submit, path)
        except RuntimeError:
            # Loop shut down between the check and the call
            pass

    def ingest(self, path: str | Path) -> None:
        """Classify a raw path against the current session and fold it into the buckets."""
        change = classify(
            path,
            self.root,
            self.session_dir,
            self.watch_set,
            self.watch_set.directories,
        )
        if self.pending.add(change):
            logger.debug(f"Pending {change.kind.value}: {change.path or path}")

    async def run(self) -> None:
        """Wait for events with an idle timeout; flush when the window goes quiet."""
        if self._queue is None:
            raise RuntimeError("SessionWatcher.start() has not been called")
        while True:
            try:
                path = await asyncio.wait_for(self._queue.get(), timeout=self.debounce_seconds)
            except asyncio.TimeoutError:
                if not self.pending.is_empty():
                    # File reads happen off the event loop so requests never wait on them
                    self._flush_task = asyncio.ensure_future(asyncio.to_thread(self.flush))
                    await asyncio.shield(self._flush_task)
                    self._flush_task = None
                continue
            self.ingest(path)

    # -------------------------------------------------------------------------
    # Flush
    # -------------------------------------------------------------------------

    def flush(self) -> list[Action]:
        """Apply everything pending, in priority order. Returns the applied plan."""
        plan = self.pending.drain()
        for action in plan:
            self._apply(action)
        if plan:
            self._reconcile()
        return plan

    def _apply(self, action: Action) -> None:
        try:
            if action.kind is ActionKind.SWITCH_SESSION:
                self._switch_session()
            elif action.kind is ActionKind.RESCAN:
                self._rescan(action.paths)
            elif action.kind is ActionKind.RELOAD_SNIPPETS:
                logger.info("code_snippets.json changed, reloading snippets")
                snapshot = reload_snippets(self.store.load())
                self._publish(snapshot)
                self._sync_watch_set(snapshot)
            elif action.kind is ActionKind.UPDATE_MARKDOWN:
                self._publish(update_markdown(self.store.load(), action.paths))
            elif action.kind is ActionKind.UPDATE_SOURCES:
                self._publish(update_sources(self.store.load(), action.paths))
        except Exception:
            logger.exception(f"Failed to apply {action.kind.value}; keeping previous snapshot")

    def _switch_session(self) -> None:
        session_dir = resolve_active_session(self.root)
        snapshot = load_snapshot(session_dir)
        logger.info(
            f"Session switched: {self.session_dir.name} -> {session_dir.name} "
            f"({snapshot.session_id} v{snapshot.version})"
        )
        self._publish(snapshot)

        if session_dir != self.session_dir:
            self._unwatch_session()
            self.session_dir = session_dir
        self._watch_session(session_dir)
        self._sync_watch_set(snapshot)

    def _rescan(self, directories: Iterable[Path]) -> None:
        """
        Re-register watches under recreated directories, then reload contents.

        Registrations are refreshed before anything is read, so a change
        landing between the two is either read here or seen as an event.
        """
        directories = set(directories)
        logger.info(f"Watched directories changed, rescanning: {sorted(map(str, directories))}")

        if self.session_dir in directories:
            directories.add(self.session_dir / CONTEXT_DIR)
        self._unwatch_session(directories)
        self._watch_session(self.session_dir)
        self.watch_set.invalidate(directories)
        self._sync_watch_set(self.store.load())

        snapshot = reload_contents(self.store.load())
        self._publish(snapshot)
        self._sync_watch_set(snapshot)

    def _reconcile(self) -> None:
        """Register anything that became watchable and drop targets that are gone."""
        self._watch_session(self.session_dir)
        self.watch_set.sync(self.watch_set.paths)

    def _publish(self, snapshot: Snapshot) -> None:
        self.store.store(snapshot)
        logger.info(f"Published snapshot: {snapshot.describe()}")

    # -------------------------------------------------------------------------
    # Registrations
    # -------------------------------------------------------------------------

    def register(self) -> None:
        """
        Register the workspace root, the session and every snippet file.

        Raises:
            WatcherError: If the workspace root cannot be watched
        """
        try:
            self.backend.watch(self.root)
        except OSError as e:
            raise WatcherError(f"Cannot watch workspace root {self.root}: {e}") from e

        self._watch_session(self.session_dir)
        self._sync_watch_set(self.store.load())

    def _watch_session(self, session_dir: Path) -> None:
        """Watch the session directory (snippet list) and its notes directory."""
        gone = {target for target in self._session_targets if not target.is_dir()}
        if gone:
            self._unwatch_session(gone)

        for target in (session_dir, session_dir / CONTEXT_DIR):
            if target in self._session_targets or not target.is_dir():
                continue
            try:
                self.backend.watch(target)
            except OSError as e:
                logger.warning(f"Failed to watch {target}: {e}")
                continue
            self._session_targets.add(target)
            logger.debug(f"Watching session directory {target}")

    def _unwatch_session(self, targets: Iterable[Path] | None = None) -> None:
        """Unregister some (default: all) session directory watches."""
        if targets is None:
            dropped = set(self._session_targets)
        else:
            dropped = self._session_targets & set(targets)
        for target in dropped:
            try:
                self.backend.unwatch(target)
            except OSError as e:
                logger.warning(f"Failed to unwatch {target}: {e}")
        self._session_targets -= dropped

    def _sync_watch_set(self, snapshot: Snapshot) -> None:
        self.watch_set.sync(snippet_paths(snapshot.snippets))


__all__ = ["EventForwarder", "SessionWatcher", "WatcherError"]
