"""
Coalescing of classified changes into a flush plan.

Editors and build tools emit bursts of events for one logical save. The
watch loop folds every event seen during the debounce window into
buckets and, once the window goes quiet, drains them into an ordered
list of actions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .classifier import Change, ChangeKind

DEFAULT_DEBOUNCE_MS = 200


class ActionKind(str, Enum):
    """One step of a flush, in the order they are applied."""

    SWITCH_SESSION = "switch_session"
    RESCAN = "rescan"
    RELOAD_SNIPPETS = "reload_snippets"
    UPDATE_MARKDOWN = "update_markdown"
    UPDATE_SOURCES = "update_sources"


@dataclass(frozen=True)
class Action:
    kind: ActionKind
    paths: frozenset[Path] = frozenset()


@dataclass
class PendingChanges:
    """Buckets filled during one debounce window."""

    session_switch: bool = False
    snippets_reload: bool = False
    directories: set[Path] = field(default_factory=set)
    markdown: set[Path] = field(default_factory=set)
    sources: set[Path] = field(default_factory=set)

    def add(self, change: Change) -> bool:
        """
        Fold a change into the buckets.

        Returns:
            False if the change was irrelevant and dropped
        """
        if change.kind is ChangeKind.SESSION_SWITCH:
            self.session_switch = True
        elif change.kind is ChangeKind.SNIPPETS_CHANGED:
            self.snippets_reload = True
        elif change.kind is ChangeKind.DIRECTORY_CHANGED and change.path is not None:
            self.directories.add(change.path)
        elif change.kind is ChangeKind.MARKDOWN_CHANGED and change.path is not None:
            self.markdown.add(change.path)
        elif change.kind is ChangeKind.SOURCE_CHANGED and change.path is not None:
            self.sources.add(change.path)
        else:
            return False
        return True

    def is_empty(self) -> bool:
        return not (
            self.session_switch
            or self.snippets_reload
            or self.directories
            or self.markdown
            or self.sources
        )

    def clear(self) -> None:
        self.session_switch = False
        self.snippets_reload = False
        self.directories.clear()
        self.markdown.clear()
        self.sources.clear()

    def drain(self) -> list[Action]:
        """
        Empty the buckets into a flush plan.

        Priority:
        1. A session switch discards everything else pending for the old
           session.
        2. A rescan (a watched directory was created, deleted or moved)
           re-registers its watches and re-reads the snippet list, every
           note and every referenced file, so it replaces all other
           pending updates.
        3. A snippet reload re-reads every referenced file, so it replaces
           pending source updates (markdown updates still apply).
        4. Markdown updates.
        5. Source updates.
        """
        plan: list[Action] = []

        if self.session_switch:
            plan.append(Action(ActionKind.SWITCH_SESSION))
        elif self.directories:
            plan.append(Action(ActionKind.RESCAN, frozenset(self.directories)))
        else:
            if self.snippets_reload:
                plan.append(Action(ActionKind.RELOAD_SNIPPETS))
                self.sources.clear()
            if self.markdown:
                plan.append(Action(ActionKind.UPDATE_MARKDOWN, frozenset(self.markdown)))
            if self.sources:
                plan.append(Action(ActionKind.UPDATE_SOURCES, frozenset(self.sources)))

        self.clear()
        return plan


__all__ = ["Action", "ActionKind", "DEFAULT_DEBOUNCE_MS", "PendingChanges"]
