"""
Shared fixtures: a .snek/ workspace root and a session factory.
"""

import json
from pathlib import Path

import pytest


def write_json(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2))


@pytest.fixture
def snek_root(tmp_path: Path) -> Path:
    """Empty workspace root."""
    root = (tmp_path / ".snek").resolve()
    root.mkdir()
    return root


@pytest.fixture
def make_session(snek_root: Path):
    """
    Factory writing a session directory under snek_root.

    Returns the canonical session directory.
    """

    def _make(
        session_id: str = "test-session-123",
        *,
        version: int = 42,
        max_tokens: int | None = 2000,
        snippets: list[dict] | None = None,
        notes: dict[str, str] | None = None,
        activate: bool = True,
    ) -> Path:
        session_dir = snek_root / "sessions" / session_id
        session = {
            "schema": 1,
            "id": session_id,
            "name": "test",
            "version": version,
            "updated_at": "2025-11-03T00:00:00Z",
        }
        if max_tokens is not None:
            session["limits"] = {"max_tokens": max_tokens}
        write_json(session_dir / "session.json", session)

        if snippets is not None:
            write_json(session_dir / "code_snippets.json", {"schema": 1, "snippets": snippets})

        context_dir = session_dir / "context"
        context_dir.mkdir(parents=True, exist_ok=True)
        for name, content in (notes or {}).items():
            (context_dir / name).write_text(content)

        if activate:
            write_json(
                snek_root / "active.json",
                {"schema": 1, "id": session_id, "path": f"sessions/{session_id}"},
            )
        return session_dir.resolve()

    return _make


@pytest.fixture
def source_file(tmp_path: Path):
    """Factory writing a source file outside the workspace; returns (path, uri)."""

    def _make(name: str, content: str) -> tuple[Path, str]:
        path = (tmp_path / "src" / name).resolve()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path, path.as_uri()

    return _make


def snippet(uri: str, start: int = 0, end: int = 1, language: str = "rust", **extra) -> dict:
    return {"uri": uri, "start_line": start, "end_line": end, "language_id": language, **extra}


@pytest.fixture
def make_snippet():
    return snippet
