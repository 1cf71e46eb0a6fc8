"""
Completion model client.

Supports:
- OpenAI-compatible chat completion endpoints (default)
- Anthropic messages API
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import anthropic
import openai

from .config import SnekConfig
from .prompts import build_messages
from .snapshot import Snapshot

logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """Completion API call failed."""
    pass


@dataclass
class CompletionClient:
    """
    Async client producing inline completions from a Snapshot.

    ``max_tokens`` comes from the snapshot's session limits, so a session
    reload changes it without rebuilding the client.
    """

    config: SnekConfig = field(default_factory=SnekConfig)
    api_key: str | None = None
    _client: Any = field(default=None, repr=False)

    def __post_init__(self):
        if self.api_key is None:
            self.api_key = self.config.api_key

    def _get_client(self) -> Any:
        """Get or create the provider SDK client."""
        if self._client is None:
            if not self.api_key:
                raise CompletionError("SNEK_API_KEY not set")
            client_kwargs: dict[str, Any] = {
                "api_key": self.api_key,
                "timeout": self.config.request_timeout,
            }
            if self.config.api_url:
                client_kwargs["base_url"] = self.config.api_url
            if self.config.provider == "anthropic":
                self._client = anthropic.AsyncAnthropic(**client_kwargs)
            else:
                self._client = openai.AsyncOpenAI(**client_kwargs)
        return self._client

    async def complete(
        self,
        snapshot: Snapshot,
        prefix: str,
        suffix: str,
        language: str,
    ) -> str:
        """
        Generate a completion for the cursor position.

        Args:
            snapshot: Snapshot loaded once by the caller for this request
            prefix: Text before the cursor
            suffix: Text after the cursor
            language: Document language id

        Returns:
            Completion text with leading whitespace removed

        Raises:
            CompletionError: If the API call fails
        """
        messages = build_messages(snapshot, prefix, suffix, language)
        max_tokens = snapshot.limits.max_tokens
        client = self._get_client()

        logger.info(
            f"Completion request: provider={self.config.provider} model={self.config.model} "
            f"max_tokens={max_tokens} {snapshot.describe()}"
        )

        try:
            if self.config.provider == "anthropic":
                text = await self._complete_anthropic(client, messages, max_tokens)
            else:
                text = await self._complete_openai(client, messages, max_tokens)
        except (openai.OpenAIError, anthropic.AnthropicError) as e:
            raise CompletionError(f"Model API error: {e}") from e

        completion = text.lstrip()
        logger.info(f"Completion generated: {len(completion)} chars")
        return completion

    async def _complete_openai(self, client: Any, messages: list[dict[str, str]], max_tokens: int) -> str:
        response = await client.chat.completions.create(
            model=self.config.model,
            messages=messages,
            temperature=self.config.temperature,
            max_tokens=max_tokens,
            stream=False,
            extra_body={"thinking": {"type": "disabled"}},
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def _complete_anthropic(self, client: Any, messages: list[dict[str, str]], max_tokens: int) -> str:
        # Anthropic takes the system prompt separately
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        response = await client.messages.create(
            model=self.config.model,
            system=system,
            messages=[m for m in messages if m["role"] != "system"],
            temperature=self.config.temperature,
            max_tokens=max_tokens,
        )
        content = ""
        for block in response.content:
            if block.type == "text":
                content += block.text
        return content


__all__ = ["CompletionClient", "CompletionError"]
