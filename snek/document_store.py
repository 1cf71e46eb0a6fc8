"""Tracks the text of the active editor document for prefix/suffix extraction."""

from __future__ import annotations

import threading
from dataclasses import dataclass


@dataclass
class _Document:
    uri: str
    language_id: str
    text: str


class DocumentStore:
    """
    Holds the currently active document (full-sync).

    Only one document is tracked: opening a document replaces the previous one.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._active: _Document | None = None

    def did_open(self, uri: str, language_id: str, text: str) -> None:
        with self._lock:
            self._active = _Document(uri, language_id, text)

    def did_change(self, uri: str, text: str) -> None:
        with self._lock:
            if self._active is not None and self._active.uri == uri:
                self._active.text = text

    def did_close(self, uri: str) -> None:
        with self._lock:
            if self._active is not None and self._active.uri == uri:
                self._active = None

    def get_context(self, uri: str, line: int, character: int) -> tuple[str, str, str] | None:
        """
        Split the document at a cursor position.

        The position is clamped to the line and document length.

        Returns:
            (prefix, suffix, language_id), or None if ``uri`` is not the
            active document
        """
        with self._lock:
            doc = self._active
            if doc is None or doc.uri != uri:
                return None
            text, language_id = doc.text, doc.language_id

        offset = 0
        for i, line_text in enumerate(text.splitlines(keepends=True)):
            if i < line:
                offset += len(line_text)
                continue
            content = line_text.rstrip("\r\n")
            offset += min(max(character, 0), len(content))
            break

        offset = min(offset, len(text))
        return text[:offset], text[offset:], language_id


__all__ = ["DocumentStore"]
