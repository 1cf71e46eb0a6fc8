"""
Editing helpers for a session's snippet list and notes.

These are the writers behind the ``snek`` subcommands. Every write is
atomic, so a running watcher only ever sees whole files.
"""

from __future__ import annotations

import logging
import shutil
import uuid
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path

from .paths import canonical_path, path_to_uri, uri_to_path
from .session_io import (
    CONTEXT_DIR,
    SESSION_FILE,
    SESSIONS_DIR,
    SNIPPETS_FILE,
    SessionReadError,
    read_session_file,
    read_snippets,
    read_text,
    snippet_paths,
    write_json_atomic,
    write_text_atomic,
)
from .session_schema import Snippet, SnippetsFile

logger = logging.getLogger(__name__)

EXTENSION_LANGUAGES = {
    ".rs": "rust",
    ".py": "python",
    ".js": "javascript",
    ".ts": "typescript",
    ".go": "go",
    ".c": "c",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".cxx": "cpp",
    ".java": "java",
    ".lua": "lua",
}


def language_for(path: Path) -> str:
    """Language id guessed from the file extension."""
    return EXTENSION_LANGUAGES.get(path.suffix, path.suffix.lstrip("."))


# =============================================================================
# Snippets
# =============================================================================


def write_snippets(session_dir: Path, snippets: Iterable[Snippet]) -> None:
    data = SnippetsFile(snippets=list(snippets)).model_dump(by_alias=True, exclude_none=True)
    write_json_atomic(session_dir / SNIPPETS_FILE, data)


def add_snippet(
    session_dir: Path,
    file_path: str | Path,
    start_line: int = 0,
    end_line: int | None = None,
    description: str | None = None,
    language_id: str | None = None,
) -> Snippet:
    """
    Append a snippet referencing a local file.

    Args:
        session_dir: Session to edit
        file_path: Referenced file; stored as a file:// URI
        start_line: First line (0-indexed, inclusive)
        end_line: End line (exclusive); defaults to the file's line count
        description: Optional note shown with the snippet
        language_id: Defaults to a guess from the extension

    Raises:
        FileNotFoundError: If ``file_path`` is not a file
        SessionReadError: If the existing snippet list is malformed
    """
    path = canonical_path(file_path)
    if not path.is_file():
        raise FileNotFoundError(f"File not found: {path}")

    if end_line is None:
        text = read_text(path)
        end_line = len(text.splitlines()) if text is not None else 0

    snippet = Snippet(
        uri=path_to_uri(path),
        start_line=start_line,
        end_line=end_line,
        language_id=language_id or language_for(path),
        description=description or None,
    )
    snippets = read_snippets(session_dir)
    snippets.append(snippet)
    write_snippets(session_dir, snippets)
    logger.info(f"Added snippet {snippet.uri} [{start_line}:{end_line}]")
    return snippet


def remove_snippets(session_dir: Path, target: str) -> list[Snippet]:
    """
    Remove snippets by index, by file, or by URI substring.

    ``target`` is tried in that order: an integer index into the list;
    a file path or file:// URI, which removes every snippet pointing at
    that file however its URI is spelled; otherwise the first snippet
    whose URI contains ``target``.

    Returns:
        The removed snippets (empty if nothing matched)
    """
    snippets = read_snippets(session_dir)
    removed: list[Snippet] = []

    if target.isdigit():
        index = int(target)
        if index < len(snippets):
            removed = [snippets[index]]
    else:
        path = uri_to_path(target) if "://" in target else canonical_path(target)
        uris = set(snippet_paths(snippets).get(path, ())) if path is not None else set()
        if uris:
            removed = [s for s in snippets if s.uri in uris]
        else:
            removed = [s for s in snippets if target in s.uri][:1]

    if removed:
        kept = [s for s in snippets if not any(s is r for r in removed)]
        write_snippets(session_dir, kept)
        logger.info(f"Removed {len(removed)} snippet(s) matching {target!r}")
    return removed


# =============================================================================
# Notes
# =============================================================================


def note_filename(name: str) -> str:
    """Validate a note name and add the .md extension if missing."""
    if not name or Path(name).name != name or name in (".", ".."):
        raise ValueError(f"Invalid note name: {name!r}")
    return name if name.endswith(".md") else f"{name}.md"


def add_note(session_dir: Path, name: str, content: str) -> Path:
    """Create or replace a note in the session's context/ directory."""
    path = session_dir / CONTEXT_DIR / note_filename(name)
    write_text_atomic(path, content)
    logger.info(f"Wrote note {path.name}")
    return path


def remove_note(session_dir: Path, name: str) -> bool:
    """Delete a note. Returns False if it did not exist."""
    path = session_dir / CONTEXT_DIR / note_filename(name)
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    logger.info(f"Removed note {path.name}")
    return True


def list_notes(session_dir: Path) -> list[str]:
    context_dir = session_dir / CONTEXT_DIR
    if not context_dir.is_dir():
        return []
    return sorted(p.name for p in context_dir.glob("*.md") if p.is_file())


def clear_context(session_dir: Path, markdown: bool = True, snippets: bool = True) -> dict[str, int]:
    """
    Remove all notes and/or all snippets from a session.

    Returns:
        Number of removed items per kind
    """
    cleared: dict[str, int] = {}
    if markdown:
        names = list_notes(session_dir)
        for name in names:
            (session_dir / CONTEXT_DIR / name).unlink(missing_ok=True)
        cleared["markdown_files"] = len(names)
    if snippets:
        cleared["code_snippets"] = len(read_snippets(session_dir))
        write_snippets(session_dir, [])
    return cleared


# =============================================================================
# Sessions
# =============================================================================


def clone_session(root: Path, source_prefix: str, name: str = "cloned") -> Path:
    """
    Copy the first session whose id starts with ``source_prefix``.

    The copy gets a fresh id, the given name and a new timestamp. The
    active session is not changed.

    Returns:
        The new session directory

    Raises:
        SessionReadError: If no session matches or its session.json is unreadable
    """
    sessions_dir = Path(root) / SESSIONS_DIR
    matches = []
    if sessions_dir.is_dir():
        matches = sorted(
            d for d in sessions_dir.iterdir() if d.is_dir() and d.name.startswith(source_prefix)
        )
    if not matches:
        raise SessionReadError(f"No session found matching {source_prefix!r}")

    source = matches[0]
    session = read_session_file(source)

    new_id = str(uuid.uuid4())
    target = sessions_dir / new_id
    shutil.copytree(source, target)

    cloned = session.model_copy(
        update={
            "id": new_id,
            "name": name,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
    )
    write_json_atomic(target / SESSION_FILE, cloned.model_dump(by_alias=True))
    logger.info(f"Cloned session {source.name} -> {new_id}")
    return canonical_path(target)


__all__ = [
    "EXTENSION_LANGUAGES",
    "add_note",
    "add_snippet",
    "clear_context",
    "clone_session",
    "language_for",
    "list_notes",
    "note_filename",
    "remove_note",
    "remove_snippets",
    "write_snippets",
]
