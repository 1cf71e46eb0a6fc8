"""
File I/O for snek sessions.

Reads the session directory into a Snapshot and resolves the active
session pointer. The bootstrap helpers at the bottom are the only code
that writes session files.

Layout under the workspace root (``.snek/``)::

    active.json
    sessions/<id>/session.json
    sessions/<id>/code_snippets.json
    sessions/<id>/context/*.md
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import uuid
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .paths import canonical_path, uri_to_path
from .session_schema import (
    SCHEMA_VERSION,
    ActivePointer,
    Limits,
    SessionFile,
    Snippet,
    SnippetsFile,
)
from .snapshot import Snapshot

logger = logging.getLogger(__name__)

ACTIVE_FILE = "active.json"
SESSION_FILE = "session.json"
SNIPPETS_FILE = "code_snippets.json"
CONTEXT_DIR = "context"
SESSIONS_DIR = "sessions"
WORKSPACE_DIRNAME = ".snek"


class SessionReadError(Exception):
    """Session metadata or snippet list could not be read."""
    pass


class ActiveSessionError(Exception):
    """active.json is missing or does not name a session."""
    pass


class WorkspaceNotFoundError(Exception):
    """No .snek/ directory exists at or above the start directory."""
    pass


# =============================================================================
# Reading
# =============================================================================


def read_text(path: Path) -> str | None:
    """
    Read a whole UTF-8 file, or None if it is missing or unreadable.

    Best-effort: callers treat None as "no content".
    """
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Skipping unreadable file {path}: {e}")
        return None


def resolve_active_session(root: Path) -> Path:
    """
    Read active.json and resolve it to the session directory.

    Raises:
        ActiveSessionError: If active.json is absent or unparsable
    """
    active_path = Path(root) / ACTIVE_FILE
    try:
        content = active_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ActiveSessionError(f"Failed to read {active_path}: {e}") from e

    try:
        active = ActivePointer.model_validate_json(content)
    except ValidationError as e:
        raise ActiveSessionError(f"Failed to parse {active_path}: {e}") from e

    return canonical_path(Path(root) / active.path)


def read_session_file(session_dir: Path) -> SessionFile:
    """Parse session.json, raising SessionReadError on any problem."""
    session_path = session_dir / SESSION_FILE
    try:
        content = session_path.read_text(encoding="utf-8")
    except OSError as e:
        raise SessionReadError(f"Failed to read {session_path}: {e}") from e

    try:
        return SessionFile.model_validate_json(content)
    except ValidationError as e:
        raise SessionReadError(f"Failed to parse {session_path}: {e}") from e


def read_snippets(session_dir: Path) -> list[Snippet]:
    """
    Parse code_snippets.json.

    A missing file is an empty list; a malformed one raises SessionReadError.
    """
    snippets_path = session_dir / SNIPPETS_FILE
    if not snippets_path.exists():
        return []

    try:
        content = snippets_path.read_text(encoding="utf-8")
    except OSError as e:
        raise SessionReadError(f"Failed to read {snippets_path}: {e}") from e

    try:
        return SnippetsFile.model_validate_json(content).snippets
    except ValidationError as e:
        raise SessionReadError(f"Failed to parse {snippets_path}: {e}") from e


def read_markdown(context_dir: Path) -> dict[str, str]:
    """Read every *.md file directly inside the notes directory, keyed by filename."""
    cache: dict[str, str] = {}
    if not context_dir.is_dir():
        return cache

    for md_path in sorted(context_dir.glob("*.md")):
        if not md_path.is_file():
            continue
        content = read_text(md_path)
        if content is not None:
            cache[md_path.name] = content
    return cache


def snippet_paths(snippets: Iterable[Snippet]) -> dict[Path, list[str]]:
    """
    Group snippet URIs by the local file they point at.

    Returns:
        Canonical path -> distinct URI strings that normalise to it, in
        first-seen order. Non-file URIs are left out.
    """
    grouped: dict[Path, list[str]] = {}
    for snippet in snippets:
        path = uri_to_path(snippet.uri)
        if path is None:
            continue
        uris = grouped.setdefault(path, [])
        if snippet.uri not in uris:
            uris.append(snippet.uri)
    return grouped


def build_file_cache(snippets: Iterable[Snippet]) -> dict[str, str]:
    """Read each distinct referenced file once and key it by every URI naming it."""
    cache: dict[str, str] = {}
    for path, uris in snippet_paths(snippets).items():
        content = read_text(path)
        if content is None:
            logger.debug(f"No content for snippet file {path}")
            continue
        for uri in uris:
            cache[uri] = content
    return cache


def load_snapshot(session_dir: Path) -> Snapshot:
    """
    Load a complete snapshot from a session directory.

    Raises:
        SessionReadError: If session.json is missing or malformed, or
            code_snippets.json exists but is malformed
    """
    session_dir = canonical_path(session_dir)
    session = read_session_file(session_dir)
    snippets = read_snippets(session_dir)

    return Snapshot(
        session_id=session.id,
        version=session.version,
        limits=session.limits,
        session_dir=session_dir,
        snippets=tuple(snippets),
        markdown_cache=read_markdown(session_dir / CONTEXT_DIR),
        file_cache=build_file_cache(snippets),
    )


# =============================================================================
# Bootstrap
# =============================================================================


def write_text_atomic(target_path: Path, content: str) -> None:
    """
    Write a file using the write-to-temp-then-rename pattern.

    Watchers see a single replace event instead of a truncated file.
    """
    target_path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(
        suffix=".tmp",
        prefix=f"{target_path.stem}_",
        dir=target_path.parent,
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(temp_path, target_path)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


def write_json_atomic(target_path: Path, data: dict[str, Any]) -> None:
    write_text_atomic(target_path, json.dumps(data, indent=2) + "\n")


def create_session(root: Path, name: str = "default", session_id: str | None = None) -> Path:
    """
    Create a session directory with default files.

    Returns:
        The new session directory
    """
    session_id = session_id or str(uuid.uuid4())
    session_dir = Path(root) / SESSIONS_DIR / session_id
    (session_dir / CONTEXT_DIR).mkdir(parents=True, exist_ok=True)

    session = SessionFile(
        id=session_id,
        name=name,
        version=0,
        limits=Limits(),
        updated_at=datetime.now(timezone.utc).isoformat(),
    )
    write_json_atomic(session_dir / SESSION_FILE, session.model_dump(by_alias=True))
    write_json_atomic(
        session_dir / SNIPPETS_FILE,
        SnippetsFile().model_dump(by_alias=True, exclude_none=True),
    )
    return session_dir


def switch_session(root: Path, session_id: str) -> Path:
    """
    Point active.json at an existing session.

    Raises:
        SessionReadError: If the session has no readable session.json
    """
    session_dir = Path(root) / SESSIONS_DIR / session_id
    read_session_file(session_dir)

    pointer = ActivePointer(id=session_id, path=f"{SESSIONS_DIR}/{session_id}")
    write_json_atomic(Path(root) / ACTIVE_FILE, pointer.model_dump(by_alias=True))
    logger.info(f"Active session is now {session_id}")
    return canonical_path(session_dir)


def initialize_default_session(root: Path) -> Path:
    """Create a default session and make it active."""
    session_dir = create_session(root)
    return switch_session(root, session_dir.name)


def list_sessions(root: Path) -> list[SessionFile]:
    """All readable sessions under the workspace root, sorted by id."""
    sessions_dir = Path(root) / SESSIONS_DIR
    if not sessions_dir.is_dir():
        return []

    sessions = []
    for session_dir in sessions_dir.iterdir():
        if not session_dir.is_dir():
            continue
        try:
            sessions.append(read_session_file(session_dir))
        except SessionReadError as e:
            logger.debug(f"Skipping invalid session {session_dir.name}: {e}")
    return sorted(sessions, key=lambda s: s.id)


def find_workspace_root(
    start: Path | None = None,
    dirname: str = WORKSPACE_DIRNAME,
    create: bool = True,
) -> Path:
    """
    Find the workspace's .snek/ directory.

    Walks up from ``start`` (default: cwd). If none exists, creates one in
    ``start`` with a default active session.

    Raises:
        WorkspaceNotFoundError: If none exists and ``create`` is False
    """
    current = canonical_path(start or Path.cwd())

    for directory in (current, *current.parents):
        candidate = directory / dirname
        if candidate.is_dir():
            return candidate

    if not create:
        raise WorkspaceNotFoundError(f"No {dirname}/ directory found from {current}")

    root = current / dirname
    root.mkdir(parents=True, exist_ok=True)
    initialize_default_session(root)
    logger.info(f"Initialized new workspace at {root}")
    return root


__all__ = [
    "ACTIVE_FILE",
    "CONTEXT_DIR",
    "SESSION_FILE",
    "SNIPPETS_FILE",
    "ActiveSessionError",
    "SessionReadError",
    "WorkspaceNotFoundError",
    "build_file_cache",
    "create_session",
    "find_workspace_root",
    "initialize_default_session",
    "list_sessions",
    "load_snapshot",
    "read_markdown",
    "read_snippets",
    "read_text",
    "resolve_active_session",
    "snippet_paths",
    "switch_session",
    "write_json_atomic",
    "write_text_atomic",
]
