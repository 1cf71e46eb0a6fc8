"""
Session schema models for snek.

Pydantic models for the JSON files that make up a session directory:

    <root>/active.json
    <root>/<session_path>/session.json
    <root>/<session_path>/code_snippets.json
"""

from __future__ import annotations

from pydantic import BaseModel, Field

SCHEMA_VERSION = 1
DEFAULT_MAX_TOKENS = 1600


class Limits(BaseModel):
    """Token limits for model completion."""

    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, gt=0)

    model_config = {"frozen": True}


class Snippet(BaseModel):
    """
    A reference to a line range in another file.

    ``start_line`` is inclusive and ``end_line`` exclusive, both 0-indexed.
    Ranges are never rejected here; ``extract`` clamps them instead.
    """

    uri: str
    start_line: int = 0
    end_line: int = 0
    language_id: str = ""
    description: str | None = None

    model_config = {"frozen": True}

    def extract(self, text: str) -> str:
        """Return the snippet's lines from a full file text, clamped to the file."""
        lines = text.splitlines()
        start = min(max(self.start_line, 0), len(lines))
        end = min(max(self.end_line, start), len(lines))
        return "\n".join(lines[start:end])


class ActivePointer(BaseModel):
    """Contents of active.json: which session directory is current."""

    schema_: int = Field(default=SCHEMA_VERSION, alias="schema")
    id: str
    path: str

    model_config = {"populate_by_name": True}


class SessionFile(BaseModel):
    """Contents of session.json."""

    schema_: int = Field(default=SCHEMA_VERSION, alias="schema")
    id: str
    name: str = "default"
    version: int = 0
    limits: Limits = Field(default_factory=Limits)
    updated_at: str | None = None

    model_config = {"populate_by_name": True}


class SnippetsFile(BaseModel):
    """Contents of code_snippets.json."""

    schema_: int = Field(default=SCHEMA_VERSION, alias="schema")
    snippets: list[Snippet] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


__all__ = [
    "ActivePointer",
    "DEFAULT_MAX_TOKENS",
    "Limits",
    "SCHEMA_VERSION",
    "SessionFile",
    "Snippet",
    "SnippetsFile",
]
