"""
Watch registrations for the session watcher.

``ObserverBackend`` turns path registrations into watchdog schedules.
``WatchSet`` tracks which snippet-referenced source files are watched and
recomputes registrations from scratch whenever the snippet list changes.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver, ObservedWatch

logger = logging.getLogger(__name__)


class WatchBackend(Protocol):
    """Registration interface used by the watcher. Both calls are idempotent."""

    def watch(self, path: Path) -> None: ...

    def unwatch(self, path: Path) -> None: ...


class ObserverBackend:
    """
    watchdog-backed registrations.

    watchdog schedules directories, so a file target is watched through its
    parent directory. Targets sharing a directory share one schedule,
    which is removed only when the last of them is unwatched. Events for
    unrelated siblings are filtered out by the classifier.
    """

    def __init__(self, handler: FileSystemEventHandler, observer: BaseObserver | None = None):
        self.handler = handler
        self.observer = observer or Observer()
        self._targets: dict[Path, Path] = {}  # target -> scheduled directory
        self._schedules: dict[Path, ObservedWatch] = {}

    @property
    def targets(self) -> frozenset[Path]:
        return frozenset(self._targets)

    def watch(self, path: Path) -> None:
        """
        Register a file or directory.

        Raises:
            OSError: If the directory cannot be scheduled
        """
        if path in self._targets:
            return
        directory = path if path.is_dir() else path.parent
        if directory not in self._schedules:
            self._schedules[directory] = self.observer.schedule(
                self.handler, str(directory), recursive=False
            )
            logger.debug(f"Scheduled watch on {directory}")
        self._targets[path] = directory

    def unwatch(self, path: Path) -> None:
        directory = self._targets.pop(path, None)
        if directory is None:
            return
        if directory in self._targets.values():
            return
        schedule = self._schedules.pop(directory, None)
        if schedule is None:
            return
        try:
            self.observer.unschedule(schedule)
        except (KeyError, OSError) as e:
            # Directory may already be gone
            logger.debug(f"Unschedule of {directory} failed: {e}")
        else:
            logger.debug(f"Unscheduled watch on {directory}")

    def start(self) -> None:
        self.observer.start()

    def stop(self) -> None:
        self.observer.stop()
        self.observer.join(timeout=5)


class WatchSet:
    """
    Source paths currently watched because a snippet references them.

    ``paths`` is the required set; membership is what the classifier checks.
    Registration may lag behind for paths that did not exist yet or failed
    to register; those are retried on the next ``sync``.
    """

    def __init__(self, backend: WatchBackend):
        self.backend = backend
        self._paths: frozenset[Path] = frozenset()
        self._registered: set[Path] = set()

    @property
    def paths(self) -> frozenset[Path]:
        return self._paths

    @property
    def directories(self) -> frozenset[Path]:
        """Parent directories of the required paths."""
        return frozenset(path.parent for path in self._paths)

    @property
    def registered(self) -> frozenset[Path]:
        return frozenset(self._registered)

    def __contains__(self, path: object) -> bool:
        return path in self._paths

    def __len__(self) -> int:
        return len(self._paths)

    def sync(self, required: Iterable[Path]) -> tuple[set[Path], set[Path]]:
        """
        Make registrations match ``required``.

        Returns:
            (newly registered paths, unregistered paths)
        """
        required = frozenset(required)
        removed: set[Path] = set()
        added: set[Path] = set()

        for path in sorted(self._registered - required):
            try:
                self.backend.unwatch(path)
            except OSError as e:
                logger.warning(f"Failed to unwatch {path}: {e}")
            self._registered.discard(path)
            removed.add(path)
            logger.info(f"Unwatched: {path}")

        for path in sorted(required - self._registered):
            if not path.exists():
                continue
            try:
                self.backend.watch(path)
            except OSError as e:
                logger.warning(f"Failed to watch {path}, will retry on next flush: {e}")
                continue
            self._registered.add(path)
            added.add(path)
            logger.info(f"Now watching: {path}")

        self._paths = required
        return added, removed

    def invalidate(self, directories: Iterable[Path]) -> set[Path]:
        """
        Drop registrations for files inside ``directories``.

        A directory that was deleted or recreated leaves its old
        registrations pointing at nothing. The paths stay required, so the
        next ``sync`` registers them again if they exist.

        Returns:
            The paths whose registration was dropped
        """
        directories = set(directories)
        stale = {path for path in self._registered if path.parent in directories}
        for path in sorted(stale):
            try:
                self.backend.unwatch(path)
            except OSError as e:
                logger.warning(f"Failed to unwatch {path}: {e}")
            self._registered.discard(path)
            logger.debug(f"Dropped stale registration: {path}")
        return stale

    def clear(self) -> None:
        self.sync(())


__all__ = ["ObserverBackend", "WatchBackend", "WatchSet"]
