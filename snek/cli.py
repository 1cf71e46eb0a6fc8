"""
Command line entry point for snek.

Usage:
    snek init                         # create .snek/ with a default session
    snek new [NAME]                   # create a session and make it active
    snek status [--json]              # show the active session snapshot
    snek active                       # active session details as JSON
    snek sessions                     # list sessions
    snek switch SESSION_ID            # point active.json at another session
    snek clone PREFIX [--name NAME]   # copy a session under a new id
    snek add-snippet FILE [--start N] [--end N] [--description TEXT]
    snek remove-snippet INDEX|FILE|URI
    snek notes                        # list context notes
    snek add-note NAME [CONTENT]      # content from stdin when omitted
    snek remove-note NAME
    snek clear [--markdown] [--snippets]
    snek watch                        # run the watcher and log every publish

Only ``init`` and ``new`` create a missing workspace; every other command
fails if there is no .snek/ directory.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from .config import SnekConfig, load_env_file
from .service import ContextService
from .session_edit import (
    add_note,
    add_snippet,
    clear_context,
    clone_session,
    list_notes,
    remove_note,
    remove_snippets,
)
from .session_io import (
    ActiveSessionError,
    SessionReadError,
    WorkspaceNotFoundError,
    create_session,
    find_workspace_root,
    list_sessions,
    load_snapshot,
    read_session_file,
    read_snippets,
    resolve_active_session,
    switch_session,
)
from .snapshot import Snapshot
from .watcher import WatcherError


def snapshot_summary(snapshot: Snapshot) -> dict:
    return {
        "session_id": snapshot.session_id,
        "version": snapshot.version,
        "revision": snapshot.revision,
        "session_dir": str(snapshot.session_dir),
        "max_tokens": snapshot.limits.max_tokens,
        "snippets": [
            {
                "uri": s.uri,
                "lines": [s.start_line, s.end_line],
                "language_id": s.language_id,
                "cached": s.uri in snapshot.file_cache,
            }
            for s in snapshot.snippets
        ],
        "notes": sorted(snapshot.markdown_cache),
    }


def workspace_root(args: argparse.Namespace, config: SnekConfig, create: bool = False) -> Path:
    return find_workspace_root(args.workspace, dirname=config.workspace_dirname, create=create)


def active_session(args: argparse.Namespace, config: SnekConfig) -> Path:
    return resolve_active_session(workspace_root(args, config))


def print_json(data) -> None:
    print(json.dumps(data, indent=2))


# =============================================================================
# Sessions
# =============================================================================


def do_init(args: argparse.Namespace, config: SnekConfig) -> int:
    root = workspace_root(args, config, create=True)
    print(f"Workspace: {root}")
    print(f"Active session: {resolve_active_session(root)}")
    return 0


def do_new(args: argparse.Namespace, config: SnekConfig) -> int:
    root = workspace_root(args, config, create=True)
    session_dir = create_session(root, name=args.name)
    switch_session(root, session_dir.name)
    print_json({"id": session_dir.name, "name": args.name, "path": str(session_dir)})
    return 0


def do_status(args: argparse.Namespace, config: SnekConfig) -> int:
    snapshot = load_snapshot(active_session(args, config))
    summary = snapshot_summary(snapshot)

    if args.json:
        print_json(summary)
        return 0

    print(f"Session:    {summary['session_id']} (version {summary['version']})")
    print(f"Directory:  {summary['session_dir']}")
    print(f"Max tokens: {summary['max_tokens']}")
    print(f"Notes:      {', '.join(summary['notes']) or '-'}")
    print(f"Snippets:   {len(summary['snippets'])}")
    for s in summary["snippets"]:
        marker = "" if s["cached"] else "  (missing)"
        print(f"  - {s['uri']} [{s['lines'][0]}:{s['lines'][1]}]{marker}")
    return 0


def do_active(args: argparse.Namespace, config: SnekConfig) -> int:
    session_dir = active_session(args, config)
    session = read_session_file(session_dir)
    print_json(
        {
            "id": session.id,
            "path": str(session_dir),
            "name": session.name,
            "max_tokens": session.limits.max_tokens,
            "updated_at": session.updated_at,
            "context_files": list_notes(session_dir),
            "code_snippets": len(read_snippets(session_dir)),
        }
    )
    return 0


def do_sessions(args: argparse.Namespace, config: SnekConfig) -> int:
    root = workspace_root(args, config)
    try:
        active = resolve_active_session(root).name
    except ActiveSessionError:
        active = None
    for session in list_sessions(root):
        marker = "*" if session.id == active else " "
        print(f"{marker} {session.id}  {session.name}  v{session.version}")
    return 0


def do_switch(args: argparse.Namespace, config: SnekConfig) -> int:
    session_dir = switch_session(workspace_root(args, config), args.session_id)
    print(f"Active session: {session_dir}")
    return 0


def do_clone(args: argparse.Namespace, config: SnekConfig) -> int:
    session_dir = clone_session(workspace_root(args, config), args.prefix, name=args.name)
    print_json({"id": session_dir.name, "name": args.name, "path": str(session_dir)})
    return 0


# =============================================================================
# Snippets and notes
# =============================================================================


def do_add_snippet(args: argparse.Namespace, config: SnekConfig) -> int:
    snippet = add_snippet(
        active_session(args, config),
        args.file,
        start_line=args.start,
        end_line=args.end,
        description=args.description,
        language_id=args.language,
    )
    print_json(snippet.model_dump(exclude_none=True))
    return 0


def do_remove_snippet(args: argparse.Namespace, config: SnekConfig) -> int:
    removed = remove_snippets(active_session(args, config), args.target)
    if not removed:
        print(f"Error: no snippet matches {args.target!r}", file=sys.stderr)
        return 1
    print_json([s.model_dump(exclude_none=True) for s in removed])
    return 0


def do_notes(args: argparse.Namespace, config: SnekConfig) -> int:
    for name in list_notes(active_session(args, config)):
        print(name)
    return 0


def do_add_note(args: argparse.Namespace, config: SnekConfig) -> int:
    content = args.content if args.content is not None else sys.stdin.read()
    path = add_note(active_session(args, config), args.name, content)
    print(f"Wrote {path}")
    return 0


def do_remove_note(args: argparse.Namespace, config: SnekConfig) -> int:
    if not remove_note(active_session(args, config), args.name):
        print(f"Error: no note named {args.name!r}", file=sys.stderr)
        return 1
    return 0


def do_clear(args: argparse.Namespace, config: SnekConfig) -> int:
    # Neither flag means both
    both = not (args.markdown or args.snippets)
    cleared = clear_context(
        active_session(args, config),
        markdown=args.markdown or both,
        snippets=args.snippets or both,
    )
    print_json({"cleared": cleared})
    return 0


# =============================================================================
# Watch
# =============================================================================


async def run_watch(args: argparse.Namespace, config: SnekConfig) -> int:
    service = ContextService.open(args.workspace, config=config, create=False)
    await service.start()
    print(f"Watching {service.root} (Ctrl-C to stop)", file=sys.stderr)
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await service.stop()


def do_watch(args: argparse.Namespace, config: SnekConfig) -> int:
    try:
        return asyncio.run(run_watch(args, config))
    except KeyboardInterrupt:
        return 0


COMMANDS = {
    "init": do_init,
    "new": do_new,
    "status": do_status,
    "active": do_active,
    "sessions": do_sessions,
    "switch": do_switch,
    "clone": do_clone,
    "add-snippet": do_add_snippet,
    "remove-snippet": do_remove_snippet,
    "notes": do_notes,
    "add-note": do_add_note,
    "remove-note": do_remove_note,
    "clear": do_clear,
    "watch": do_watch,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snek",
        description="Session context for AI code completion",
    )
    parser.add_argument(
        "--workspace",
        "-w",
        type=Path,
        default=None,
        help="Directory to search for .snek/ from (default: cwd)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("init", help="Create .snek/ with a default session if missing")
    new = subparsers.add_parser("new", help="Create a session and make it active")
    new.add_argument("name", nargs="?", default="default")
    status = subparsers.add_parser("status", help="Show the active session snapshot")
    status.add_argument("--json", action="store_true", help="Print as JSON")
    subparsers.add_parser("active", help="Print active session details as JSON")
    subparsers.add_parser("sessions", help="List sessions")
    switch = subparsers.add_parser("switch", help="Make another session active")
    switch.add_argument("session_id")
    clone = subparsers.add_parser("clone", help="Copy a session under a new id")
    clone.add_argument("prefix", help="Id (or id prefix) of the session to copy")
    clone.add_argument("--name", default="cloned")

    add = subparsers.add_parser("add-snippet", help="Reference a file range in the active session")
    add.add_argument("file", type=Path)
    add.add_argument("--start", type=int, default=0, help="First line, 0-indexed")
    add.add_argument("--end", type=int, default=None, help="End line, exclusive (default: end of file)")
    add.add_argument("--description", default=None)
    add.add_argument("--language", default=None, help="Language id (default: from extension)")
    remove = subparsers.add_parser("remove-snippet", help="Remove snippets by index, file or URI")
    remove.add_argument("target")

    subparsers.add_parser("notes", help="List context notes")
    add_md = subparsers.add_parser("add-note", help="Write a context note")
    add_md.add_argument("name")
    add_md.add_argument("content", nargs="?", default=None)
    remove_md = subparsers.add_parser("remove-note", help="Delete a context note")
    remove_md.add_argument("name")
    clear = subparsers.add_parser("clear", help="Remove notes and/or snippets")
    clear.add_argument("--markdown", action="store_true")
    clear.add_argument("--snippets", action="store_true")

    subparsers.add_parser("watch", help="Watch the session and log snapshot updates")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    load_env_file()
    config = SnekConfig.load()

    try:
        return COMMANDS[args.command](args, config)
    except (
        WorkspaceNotFoundError,
        ActiveSessionError,
        SessionReadError,
        WatcherError,
        FileNotFoundError,
        ValueError,
    ) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
