"""
Configuration management for snek.

Settings come from, lowest priority first: dataclass defaults,
~/.snek/config.json, then SNEK_* environment variables (a project .env is
loaded into the environment first).
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Literal

from dotenv import load_dotenv

from .debounce import DEFAULT_DEBOUNCE_MS
from .session_io import WORKSPACE_DIRNAME

logger = logging.getLogger(__name__)

CONFIG_PATH = Path.home() / ".snek" / "config.json"

DEFAULT_CONFIG: dict[str, Any] = {
    "debounce_ms": DEFAULT_DEBOUNCE_MS,
    "workspace_dirname": WORKSPACE_DIRNAME,
    "provider": "openai",
    "model": "glm-4.6",
    "api_url": None,
    "temperature": 0.0,
    "request_timeout": 60.0,
}

# Environment variable -> (field, converter)
ENV_OVERRIDES = {
    "SNEK_DEBOUNCE_MS": ("debounce_ms", int),
    "SNEK_PROVIDER": ("provider", str),
    "SNEK_MODEL": ("model", str),
    "SNEK_API_URL": ("api_url", str),
    "SNEK_TEMPERATURE": ("temperature", float),
}


def _filter_dataclass_fields(data: dict[str, Any], cls: type) -> dict[str, Any]:
    """Filter dict to only include fields that exist in the dataclass."""
    valid_fields = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in valid_fields}


def load_env_file(path: Path | None = None) -> bool:
    """Load a .env file (default: ./.env) without overriding the real environment."""
    env_file = path or Path.cwd() / ".env"
    if env_file.exists():
        return load_dotenv(env_file, override=False)
    return False


@dataclass
class SnekConfig:
    """
    snek user configuration.

    The API key is never stored in the file; it is read from SNEK_API_KEY
    (see ``api_key``).
    """

    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    workspace_dirname: str = WORKSPACE_DIRNAME
    provider: Literal["openai", "anthropic"] = "openai"
    model: str = "glm-4.6"
    api_url: str | None = None
    temperature: float = 0.0
    request_timeout: float = 60.0

    @property
    def api_key(self) -> str | None:
        return os.environ.get("SNEK_API_KEY")

    @classmethod
    def load(cls, path: Path | None = None, use_env: bool = True) -> "SnekConfig":
        """
        Load config from file with defaults and environment overrides.

        Args:
            path: Optional config file path. Defaults to ~/.snek/config.json
            use_env: Apply SNEK_* environment overrides

        Returns:
            SnekConfig instance
        """
        if path is None:
            path = CONFIG_PATH

        config = DEFAULT_CONFIG.copy()

        if path.exists():
            try:
                config.update(json.loads(path.read_text()))
            except (json.JSONDecodeError, OSError) as e:
                logger.warning(f"Ignoring unreadable config {path}: {e}")

        if use_env:
            for var, (name, convert) in ENV_OVERRIDES.items():
                value = os.environ.get(var)
                if value is None:
                    continue
                try:
                    config[name] = convert(value)
                except ValueError:
                    logger.warning(f"Ignoring invalid {var}={value!r}")

        return cls(**_filter_dataclass_fields(config, cls))

    def save(self, path: Path | None = None) -> None:
        """Save configuration to file."""
        if path is None:
            path = CONFIG_PATH

        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            json.dump(asdict(self), f, indent=2)


__all__ = ["CONFIG_PATH", "DEFAULT_CONFIG", "SnekConfig", "load_env_file"]
