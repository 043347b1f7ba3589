"""Roomdrop application configuration.

Loads settings from a single YAML file:
  * roomdrop.settings.yaml: relay, transfer and logging configuration

A missing file is not an error; every field has a default that matches the
behaviour of the browser peers (512 KiB chunks, three parallel transfers,
2 GiB message ceiling).
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("roomdrop.settings.yaml")

# 512 KiB per chunk to balance throughput and memory
DEFAULT_CHUNK_SIZE = 512 * 1024

# Largest single WebSocket message the relay accepts (2 GiB)
DEFAULT_MAX_MESSAGE_SIZE = 2 * 1024 * 1024 * 1024

DEFAULT_PARALLEL_LIMIT = 3

DEFAULT_EXCLUDE_PATTERNS = [
    "node_modules/",
    ".git/",
    ".next/",
    "dist/",
    "build/",
    ".cache/",
    "coverage/",
    ".nyc_output/",
    "logs/",
    "*.log",
    ".DS_Store",
    "Thumbs.db",
]

_LOG_LEVELS = ("critical", "error", "warning", "info", "debug")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000


class LoggingSettings(BaseModel):
    level: str = "info"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if value.lower() not in _LOG_LEVELS:
            raise ValueError(f"Unknown log level: {value}")
        return value.lower()


class RelaySettings(BaseModel):
    """WebSocket relay transport limits."""
    path:             str = "/ws/file-share"
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE

    @field_validator("max_message_size")
    @classmethod
    def _positive_size(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("max_message_size must be positive")
        return value


class TransferSettings(BaseModel):
    """Sender and receiver behaviour shared by every peer."""
    chunk_size:       int       = DEFAULT_CHUNK_SIZE
    parallel_limit:   int       = DEFAULT_PARALLEL_LIMIT
    strict_assembly:  bool      = True
    download_dir:     str       = "./downloads"
    exclude_patterns: List[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS))

    @field_validator("chunk_size")
    @classmethod
    def _positive_chunk(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("chunk_size must be positive")
        return value

    @field_validator("parallel_limit")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("parallel_limit must be at least 1")
        return value


class AppSettings(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)
    relay:    RelaySettings    = Field(default_factory=RelaySettings)
    transfer: TransferSettings = Field(default_factory=TransferSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(path: Optional[Path] = None) -> AppSettings:
    """Load settings from *path* (defaults to ``roomdrop.settings.yaml``)."""
    settings_data = _load_yaml(path or SETTINGS_FILE)

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, relay.path=%s, chunk_size=%d, parallel_limit=%d)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.relay.path,
        app_settings.transfer.chunk_size,
        app_settings.transfer.parallel_limit,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def reset_config() -> None:
    """Forget cached settings (for testing)."""
    global _config
    _config = None
