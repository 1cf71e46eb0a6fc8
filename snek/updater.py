"""
Incremental snapshot updates.

Each function takes the current Snapshot and returns a new one built from
it plus targeted re-reads. Entries that were not affected are carried over
untouched; nothing here publishes, the watch loop does that.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from .paths import uri_to_path
from .session_io import CONTEXT_DIR, build_file_cache, read_markdown, read_snippets, read_text
from .snapshot import Snapshot

logger = logging.getLogger(__name__)


def reload_snippets(snapshot: Snapshot) -> Snapshot:
    """
    Re-read code_snippets.json and rebuild the file cache.

    Session metadata, limits and notes are kept.

    Raises:
        SessionReadError: If the snippet list is malformed
    """
    snippets = read_snippets(snapshot.session_dir)
    return snapshot.derive(
        snippets=tuple(snippets),
        file_cache=build_file_cache(snippets),
    )


def reload_contents(snapshot: Snapshot) -> Snapshot:
    """
    Re-read the snippet list, every note and every referenced file.

    Used after a watched directory was recreated, when individual events
    may have been missed. Session metadata and limits are kept.

    Raises:
        SessionReadError: If the snippet list is malformed
    """
    snippets = read_snippets(snapshot.session_dir)
    return snapshot.derive(
        snippets=tuple(snippets),
        markdown_cache=read_markdown(snapshot.session_dir / CONTEXT_DIR),
        file_cache=build_file_cache(snippets),
    )


def update_markdown(snapshot: Snapshot, paths: Iterable[Path]) -> Snapshot:
    """Upsert notes that exist, drop notes that were deleted."""
    cache = dict(snapshot.markdown_cache)

    for path in paths:
        if path.exists():
            content = read_text(path)
            if content is None:
                cache.pop(path.name, None)
                continue
            cache[path.name] = content
            logger.debug(f"Updated markdown cache: {path.name}")
        elif cache.pop(path.name, None) is not None:
            logger.debug(f"Removed from markdown cache: {path.name}")

    return snapshot.derive(markdown_cache=cache)


def update_sources(snapshot: Snapshot, paths: Iterable[Path]) -> Snapshot:
    """
    Refresh or evict file cache entries for changed source files.

    Every snippet URI that normalises to a changed path is updated, so
    differently spelled URIs for the same file stay consistent.
    """
    changed = set(paths)
    uris_by_path: dict[Path, set[str]] = {}
    for snippet in snapshot.snippets:
        path = uri_to_path(snippet.uri)
        if path in changed:
            uris_by_path.setdefault(path, set()).add(snippet.uri)

    cache = dict(snapshot.file_cache)
    for path, uris in uris_by_path.items():
        content = read_text(path)
        for uri in uris:
            if content is None:
                if cache.pop(uri, None) is not None:
                    logger.debug(f"Removed from file cache: {uri}")
            else:
                cache[uri] = content
                logger.debug(f"Updated file cache: {uri}")

    return snapshot.derive(file_cache=cache)


__all__ = ["reload_contents", "reload_snippets", "update_markdown", "update_sources"]
