"""URI and path normalisation shared by the loader, watcher and updater."""

from __future__ import annotations

import os
from pathlib import Path
from urllib.parse import unquote, urlparse


def canonical_path(path: str | os.PathLike[str]) -> Path:
    """Absolute, symlink-resolved form of ``path`` (need not exist)."""
    return Path(os.path.abspath(path)).resolve()


def uri_to_path(uri: str) -> Path | None:
    """
    Convert a ``file://`` URI to a canonical local path.

    Percent-encoding and trailing slashes are normalised away so that
    differently spelled URIs for the same file map to one path. Returns
    None for non-file schemes and remote authorities.
    """
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        return None
    if parsed.netloc not in ("", "localhost"):
        return None

    raw = unquote(parsed.path)
    if not raw:
        return None
    if len(raw) > 1:
        raw = raw.rstrip("/") or "/"
    # Windows drive letters arrive as /C:/...
    if os.name == "nt" and len(raw) > 2 and raw[0] == "/" and raw[2] == ":":
        raw = raw[1:]
    return canonical_path(raw)


def path_to_uri(path: str | os.PathLike[str]) -> str:
    """Inverse of uri_to_path for absolute local paths."""
    return canonical_path(path).as_uri()


__all__ = ["canonical_path", "path_to_uri", "uri_to_path"]
