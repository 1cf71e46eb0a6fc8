"""
Snapshot value object and the single-writer snapshot store.

A Snapshot is one consistent view of the active session. It is never
mutated after it is published: incremental updates build a new Snapshot
with ``dataclasses.replace`` and hand it to ``SnapshotStore.store``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any

from .session_schema import Limits, Snippet


def freeze(entries: Mapping[str, str] | Iterable[tuple[str, str]] = ()) -> Mapping[str, str]:
    """Copy entries into a read-only mapping."""
    return MappingProxyType(dict(entries))


@dataclass(frozen=True)
class Snapshot:
    """
    Immutable bundle of session configuration and cached file contents.

    Attributes:
        session_id: Id from session.json
        version: Version from session.json, for logging only
        limits: Completion limits
        session_dir: Canonical session directory
        snippets: Ordered snippet references
        markdown_cache: Filename -> full text of each context/*.md
        file_cache: Snippet URI -> full text of the referenced file
        revision: 0 when loaded from disk, +1 for every derived snapshot
    """

    session_id: str
    version: int
    limits: Limits
    session_dir: Path
    snippets: tuple[Snippet, ...] = ()
    markdown_cache: Mapping[str, str] = field(default_factory=freeze)
    file_cache: Mapping[str, str] = field(default_factory=freeze)
    revision: int = 0

    def __post_init__(self) -> None:
        # Accept plain lists/dicts from callers but never expose them mutably
        object.__setattr__(self, "snippets", tuple(self.snippets))
        object.__setattr__(self, "markdown_cache", freeze(self.markdown_cache))
        object.__setattr__(self, "file_cache", freeze(self.file_cache))

    def derive(self, **changes: Any) -> "Snapshot":
        """Clone with some fields replaced and the revision bumped."""
        return replace(self, revision=self.revision + 1, **changes)

    def markdown_context(self) -> str:
        """All notes concatenated in filename order."""
        return "\n\n".join(
            self.markdown_cache[name] for name in sorted(self.markdown_cache)
        )

    def code_for(self, snippet: Snippet) -> str | None:
        """Extracted snippet lines, or None if the file content is unknown."""
        text = self.file_cache.get(snippet.uri)
        if text is None:
            return None
        return snippet.extract(text)

    def describe(self) -> str:
        return (
            f"session={self.session_id} v{self.version} r{self.revision} "
            f"snippets={len(self.snippets)} notes={len(self.markdown_cache)} "
            f"files={len(self.file_cache)}"
        )


class SnapshotStore:
    """
    Atomic-replace cell holding the current Snapshot.

    ``load`` never blocks and may be called from any thread or task.
    ``store`` is called by exactly one writer (the watch loop); a plain
    reference assignment is atomic, so readers always see either the old
    or the new snapshot and keep whichever one they loaded.
    """

    def __init__(self, initial: Snapshot):
        if not isinstance(initial, Snapshot):
            raise TypeError(f"SnapshotStore needs a Snapshot, got {type(initial).__name__}")
        self._current = initial

    def load(self) -> Snapshot:
        """Most recently published snapshot."""
        return self._current

    def store(self, snapshot: Snapshot) -> None:
        """Publish a new snapshot, replacing the current one as a whole."""
        if not isinstance(snapshot, Snapshot):
            raise TypeError(f"SnapshotStore needs a Snapshot, got {type(snapshot).__name__}")
        self._current = snapshot


__all__ = ["Snapshot", "SnapshotStore", "freeze"]
