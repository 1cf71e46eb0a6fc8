"""
Completion prompt templates.

Builds the chat messages for one completion request from a Snapshot and
the text around the cursor.
"""

from __future__ import annotations

from .snapshot import Snapshot

SYSTEM_PROMPT = (
    "You are an AI code completion assistant. Generate code that naturally "
    "continues from the given prefix. Return ONLY the completion code without "
    "explanations, markdown formatting, or code fences."
)

CURSOR = "<CURSOR>"


def build_context_block(snapshot: Snapshot) -> str:
    """Notes and snippets section of the user message ('' when both are empty)."""
    parts: list[str] = []

    markdown = snapshot.markdown_context()
    if markdown:
        parts.append("Here is some context you might need:\n\n")
        parts.append(markdown)
        parts.append("\n\n---\n\n")

    if snapshot.snippets:
        parts.append("Here are some code snippets that you will need:\n\n")
        for idx, snippet in enumerate(snapshot.snippets, start=1):
            parts.append(
                f"Snippet {idx}:\n"
                f"  URI: {snippet.uri}\n"
                f"  Lines: {snippet.start_line}-{snippet.end_line}\n"
                f"  Language: {snippet.language_id}\n"
            )
            if snippet.description:
                parts.append(f"  Description: {snippet.description}\n")
            code = snapshot.code_for(snippet)
            if code is None:
                parts.append("  Code: (unavailable)\n\n")
            else:
                parts.append(f"  Code:\n```\n{code}\n```\n\n")
        parts.append("---\n\n")

    return "".join(parts)


def build_messages(
    snapshot: Snapshot,
    prefix: str,
    suffix: str,
    language: str,
) -> list[dict[str, str]]:
    """
    Build the message list for the completion model.

    Args:
        snapshot: Snapshot loaded once for this request
        prefix: Document text before the cursor
        suffix: Document text after the cursor
        language: Language id of the document

    Returns:
        [system message, user message]
    """
    user = [build_context_block(snapshot)]

    user.append(f"Complete the following {language} code. The cursor is at {CURSOR}.\n\n")
    user.append(f"Code before cursor:\n```\n{prefix}\n```\n\n{CURSOR}\n\n")
    if suffix.strip():
        user.append(f"Code after cursor:\n```\n{suffix}\n```\n\n")
    user.append(
        f"Generate ONLY the code that should be inserted at {CURSOR}. "
        "Do not include any explanations or markdown formatting."
    )

    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": "".join(user)},
    ]


__all__ = ["CURSOR", "SYSTEM_PROMPT", "build_context_block", "build_messages"]
