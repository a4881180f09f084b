"""Configuration loader for packetbot."""
from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

import yaml

from packetbot.common.logger import LOG_LEVEL_ENV, check_level

DEFAULT_CONFIG_PATH = "configs/packetbot.yaml"
DEFAULT_API_BASE = "https://discord.com/api/v10"


class ConfigError(RuntimeError):
    """Raised when required settings are missing or malformed."""


@dataclass(slots=True)
class Config:
    """Simple wrapper around the loaded configuration dictionary."""

    data: Dict[str, Any]

    def get(self, path: str, default: Any | None = None) -> Any:
        """Return a key from the configuration using dot-notation."""

        cursor: Any = self.data
        for token in path.split("."):
            if not isinstance(cursor, dict):
                return default
            if token not in cursor:
                return default
            cursor = cursor[token]
        return cursor


@dataclass(slots=True)
class RetentionSettings:
    """Tunables for the retention passes."""

    interval_s: float = 15.0
    max_per_pass: int = 5
    page_size: int = 100
    concurrency: int = 1
    dry_run: bool = False


@dataclass(slots=True)
class LoggingSettings:
    level: str = "INFO"
    log_dir: str | None = None


@dataclass(slots=True)
class DiscordSettings:
    token: str
    api_base: str = DEFAULT_API_BASE
    timeout_s: float = 10.0
    max_attempts: int = 3


class ConfigLoader:
    """Loads YAML configuration files with simple caching."""

    _lock = threading.Lock()
    _cached: Config | None = None
    _source_path: Path | None = None
    _source_mtime: float | None = None

    @classmethod
    def load(cls, path: str | Path) -> Config:
        config_path = Path(path).expanduser().resolve()
        with cls._lock:
            if cls._should_reload(config_path):
                try:
                    with config_path.open("r", encoding="utf-8") as handle:
                        raw_config = yaml.safe_load(handle) or {}
                except FileNotFoundError as exc:
                    raise ConfigError(f"Configuration file not found: {config_path}") from exc
                except yaml.YAMLError as exc:
                    raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc
                if not isinstance(raw_config, dict):
                    raise ConfigError(f"Configuration root in {config_path} must be a mapping")
                cls._cached = Config(raw_config)
                cls._source_path = config_path
                cls._source_mtime = config_path.stat().st_mtime
        assert cls._cached is not None, "Configuration cache not initialized"
        return cls._cached

    @classmethod
    def _should_reload(cls, path: Path) -> bool:
        if cls._cached is None:
            return True
        if cls._source_path != path:
            return True
        try:
            return path.stat().st_mtime != cls._source_mtime
        except FileNotFoundError:
            return True


def _number(cfg: Config, path: str, default: float, cast: type, minimum: float) -> Any:
    raw = cfg.get(path, default)
    try:
        value = cast(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{path} must be a number, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{path} must be >= {minimum}, got {value}")
    return value


def _flag(cfg: Config, path: str, default: bool) -> bool:
    raw = cfg.get(path, default)
    if not isinstance(raw, bool):
        raise ConfigError(f"{path} must be true or false, got {raw!r}")
    return raw


def load_logging_settings(cfg: Config) -> LoggingSettings:
    """Resolve ``bot.log_level`` (falling back to ``PACKETBOT_LOG_LEVEL``) and ``bot.log_dir``."""

    raw_level = cfg.get("bot.log_level") or os.getenv(LOG_LEVEL_ENV, "INFO")
    try:
        level = check_level(raw_level)
    except ValueError as exc:
        raise ConfigError(f"bot.log_level is not a known log level: {raw_level!r}") from exc
    log_dir = cfg.get("bot.log_dir")
    return LoggingSettings(level=level, log_dir=str(log_dir) if log_dir else None)


def load_discord_settings(cfg: Config) -> DiscordSettings:
    """Resolve the Discord credential and transport settings.

    The bot token may come from ``bot.token`` or the ``PACKETBOT_TOKEN``
    environment variable; running without one is a startup failure.
    """

    token = cfg.get("bot.token") or os.getenv("PACKETBOT_TOKEN")
    if not token:
        raise ConfigError("No bot token configured (set bot.token or PACKETBOT_TOKEN)")
    return DiscordSettings(
        token=str(token),
        api_base=str(cfg.get("discord.api_base", DEFAULT_API_BASE)).rstrip("/"),
        timeout_s=_number(cfg, "discord.timeout_s", 10.0, float, 0.1),
        max_attempts=_number(cfg, "discord.max_attempts", 3, int, 1),
    )


def load_retention_settings(cfg: Config) -> RetentionSettings:
    return RetentionSettings(
        interval_s=_number(cfg, "retention.interval_s", 15.0, float, 1.0),
        max_per_pass=_number(cfg, "retention.max_per_pass", 5, int, 1),
        page_size=_number(cfg, "retention.page_size", 100, int, 1),
        concurrency=_number(cfg, "retention.concurrency", 1, int, 1),
        dry_run=_flag(cfg, "retention.dry_run", False),
    )


__all__ = [
    "Config",
    "ConfigError",
    "ConfigLoader",
    "DiscordSettings",
    "LoggingSettings",
    "RetentionSettings",
    "load_discord_settings",
    "load_logging_settings",
    "load_retention_settings",
    "DEFAULT_CONFIG_PATH",
]
