"""Map raw filesystem paths to the kind of session change they represent."""

from __future__ import annotations

from collections.abc import Container
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .paths import canonical_path
from .session_io import ACTIVE_FILE, CONTEXT_DIR, SNIPPETS_FILE


class ChangeKind(str, Enum):
    """What a changed path means for the active session."""

    SESSION_SWITCH = "session_switch"
    SNIPPETS_CHANGED = "snippets_changed"
    MARKDOWN_CHANGED = "markdown_changed"
    DIRECTORY_CHANGED = "directory_changed"
    SOURCE_CHANGED = "source_changed"
    IRRELEVANT = "irrelevant"


@dataclass(frozen=True)
class Change:
    """A classified change. ``path`` is set for markdown, directory and source changes."""

    kind: ChangeKind
    path: Path | None = None


IRRELEVANT = Change(ChangeKind.IRRELEVANT)


def classify(
    path: str | Path,
    root: Path,
    session_dir: Path,
    watched: Container[Path],
    directories: Container[Path] = frozenset(),
) -> Change:
    """
    Classify a changed path by its position in the workspace.

    Checked in priority order: the session pointer, the snippet list, a
    note in the session's context/ directory, a directory that holds watch
    registrations (the session directory, its context/ directory or the
    parent of a watched source), a watched source file.

    Args:
        path: Path reported by the filesystem watcher
        root: Canonical workspace root (the .snek/ directory)
        session_dir: Canonical directory of the currently active session
        watched: Current watch-set of canonical source paths
        directories: Parent directories of the watched source paths

    Returns:
        The Change; IRRELEVANT for everything else
    """
    path = canonical_path(path)
    context_dir = session_dir / CONTEXT_DIR

    if path == root / ACTIVE_FILE:
        return Change(ChangeKind.SESSION_SWITCH)
    if path == session_dir / SNIPPETS_FILE:
        return Change(ChangeKind.SNIPPETS_CHANGED)
    if path.suffix == ".md" and path.parent == context_dir:
        return Change(ChangeKind.MARKDOWN_CHANGED, path)
    if path in (session_dir, context_dir) or path in directories:
        return Change(ChangeKind.DIRECTORY_CHANGED, path)
    if path in watched:
        return Change(ChangeKind.SOURCE_CHANGED, path)
    return IRRELEVANT


__all__ = ["Change", "ChangeKind", "IRRELEVANT", "classify"]
