"""Configuration management for AgriAssist."""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from agriassist.exceptions import ConfigError
from agriassist.models import Language, parse_language

ENV_WS_URL = "AGRIASSIST_WS_URL"
ENV_API_URL = "AGRIASSIST_API_URL"
ENV_TOKEN = "AGRIASSIST_TOKEN"

LOG_LEVEL_NAMES = ("debug", "info", "warning", "error", "critical")

# Connection fields hoisted to the top of every JSON log line when present.
_CONNECTION_FIELDS = ("conversation_id", "generation", "close_code")
_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime", "taskName"}

# websockets logs every frame at debug; keep it out of session traces.
_NOISY_LOGGERS = ("websockets",)


def _log_level(name: str) -> int:
    normalized = name.strip().lower()
    if normalized not in LOG_LEVEL_NAMES:
        raise ValueError(f"Invalid log level: {name}. Valid: {', '.join(LOG_LEVEL_NAMES)}")
    return logging.getLevelName(normalized.upper())


class ChatLogFormatter(logging.Formatter):
    """One JSON object per record.

    ``conversation_id``, ``generation`` and ``close_code`` passed through
    ``extra=`` become top-level keys so a reconnect cycle can be followed by
    filtering on them. Any other extras are grouped under ``context``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        context: dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            if not isinstance(value, (str, int, float, bool)) and value is not None:
                value = str(value)
            if key in _CONNECTION_FIELDS:
                payload[key] = value
            else:
                context[key] = value
        if context:
            payload["context"] = context
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(config: "ChatConfig") -> None:
    """Send JSON log lines to ``config.log_file`` or stderr."""
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    handler: logging.Handler
    if config.log_file:
        handler = logging.FileHandler(config.log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler()
    handler.setFormatter(ChatLogFormatter())
    root_logger.addHandler(handler)

    levels = {name: _log_level(level) for name, level in config.log_levels.items()}
    root_logger.setLevel(min([_log_level(config.log_level), *levels.values()]))
    for name in _NOISY_LOGGERS:
        if name not in levels:
            logging.getLogger(name).setLevel(logging.WARNING)
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)


class ReconnectConfig(BaseModel):
    """Reconnect configuration."""

    max_attempts: int = Field(default=5, ge=0, le=20, description="Automatic reconnect attempts before giving up")
    base_delay: float = Field(default=2.0, ge=0.1, description="Delay unit; attempt N waits N * base_delay seconds")
    max_delay: float | None = Field(default=None, ge=0.1, description="Optional cap on a single reconnect delay")


class ChatConfig(BaseModel):
    """Main configuration for the AgriAssist chat client."""

    ws_base_url: str = Field(default="ws://localhost:8001/ws", description="Chat WebSocket base address")
    api_base_url: str = Field(default="http://localhost:5000/api", description="REST API base address")
    default_language: Language = Field(default=Language.ENGLISH, description="Reply language when none is given")
    open_timeout: float = Field(default=10.0, ge=0.5, description="WebSocket handshake timeout (seconds)")
    http_timeout: float = Field(default=30.0, ge=1.0, description="REST request timeout (seconds)")
    history_page_size: int = Field(default=100, ge=1, le=500, description="Messages fetched when opening a chat")
    conversations_page_size: int = Field(default=50, ge=1, le=200, description="Conversations fetched for the list")
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig, description="Reconnect configuration")

    log_level: str = Field(default="warning", description="Log level")
    log_levels: dict[str, str] = Field(
        default_factory=dict,
        description="Per-component log levels (e.g., {'agriassist.session': 'debug'})",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional log file path (structured JSON)",
    )

    @field_validator("ws_base_url")
    @classmethod
    def _validate_ws_base_url(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value.startswith(("ws://", "wss://")):
            raise ValueError("ws_base_url must start with ws:// or wss://")
        return value

    @field_validator("api_base_url")
    @classmethod
    def _validate_api_base_url(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value.startswith(("http://", "https://")):
            raise ValueError("api_base_url must start with http:// or https://")
        return value

    @field_validator("default_language", mode="before")
    @classmethod
    def _validate_default_language(cls, value: Any) -> Language:
        try:
            return parse_language(value)
        except ValueError:
            valid = ", ".join(lang.value for lang in Language)
            raise ValueError(f"Invalid default_language. Valid: {valid}") from None

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        _log_level(value)
        return value.strip().lower()

    @field_validator("log_levels")
    @classmethod
    def _validate_log_levels(cls, value: dict[str, str]) -> dict[str, str]:
        for level in value.values():
            _log_level(level)
        return {name: level.strip().lower() for name, level in value.items()}

    @classmethod
    def from_file(cls, path: str | Path) -> "ChatConfig":
        """Load configuration from TOML file."""
        import tomllib

        path = Path(path)
        if not path.exists():
            return cls()

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Malformed config file: {e}", context={"path": str(path)}) from e

        return cls(**data)

    @classmethod
    def default_path(cls) -> Path:
        """Get default config file path."""
        return Path.home() / ".config" / "agriassist" / "config.toml"

    @classmethod
    def load(cls, path: str | Path | None = None) -> "ChatConfig":
        """Load from ``path`` (or the default path), then apply URL env overrides."""
        config = cls.from_file(path or cls.default_path())
        overrides: dict[str, Any] = {}
        if os.environ.get(ENV_WS_URL):
            overrides["ws_base_url"] = os.environ[ENV_WS_URL]
        if os.environ.get(ENV_API_URL):
            overrides["api_base_url"] = os.environ[ENV_API_URL]
        if overrides:
            config = cls(**{**config.model_dump(), **overrides})
        return config
