"""Configuration management for localchat."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

_logger = logging.getLogger(__name__)

DEFAULT_HOST = "http://localhost:11434"
DEFAULT_MODEL = "qwen3:0.6b"


class ChatConfig(BaseModel):
    """Settings consumed by the chat client.  No other keys are accepted."""

    model_config = ConfigDict(extra="forbid")

    base_url: str = DEFAULT_HOST
    model: str = DEFAULT_MODEL
    system_prompt: str = ""


class StorageConfig(BaseModel):
    history_db: str = "~/.localchat/history.db"
    models_cache_db: str = "~/.localchat/models.db"


class AppConfig(BaseModel):
    ollama: ChatConfig = Field(default_factory=ChatConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


CONFIG_FILENAME = "localchat.yaml"


def load_config(
    config_path: str | Path | None = None,
) -> tuple[AppConfig, Path | None]:
    """Load configuration from YAML file.

    Returns (config, resolved_path).  *resolved_path* is ``None`` when
    no file was found and built-in defaults are used.

    Search order (first match wins):
      1. Explicit ``--config`` path
      2. Current working directory: ``./localchat.yaml``
      3. User config dir: ``~/.localchat/localchat.yaml``
    """
    if config_path is not None:
        resolved = Path(config_path)
        if not resolved.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        resolved = None
        for d in (Path.cwd(), Path.home() / ".localchat"):
            candidate = d / CONFIG_FILENAME
            if candidate.exists():
                resolved = candidate
                break

    if resolved is None:
        _logger.info("No config file found, using defaults")
        return AppConfig(), None

    _logger.info("Loading config from %s", resolved)
    with open(resolved) as f:
        raw: dict[str, Any] = yaml.safe_load(f) or {}
    return AppConfig.model_validate(raw), resolved.resolve()
