"""Logging setup shared by the bot and packetbotctl.

Everything goes through loguru. Records emitted by libraries that use the
standard ``logging`` module (urllib3 connection and retry messages, mostly)
are forwarded into loguru so a single sink configuration covers them.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from packetbot.common.config import LoggingSettings

LOG_LEVEL_ENV = "PACKETBOT_LOG_LEVEL"


class InterceptHandler(logging.Handler):
    """Stdlib logging handler that re-emits records through loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.opt(exception=record.exc_info).bind(stdlib=record.name).log(level, record.getMessage())


def check_level(name: str) -> str:
    """Return the normalised loguru level name, raising ``ValueError`` if unknown."""

    return logger.level(str(name).upper()).name


def configure_logging(service_name: str, settings: LoggingSettings | None = None) -> None:
    """Install packetbot's sinks, replacing any previous configuration.

    Without ``settings`` the level comes from ``PACKETBOT_LOG_LEVEL`` (or
    INFO), which is what the entrypoint uses until the config file is read.
    """

    level = check_level(settings.level if settings else os.getenv(LOG_LEVEL_ENV, "INFO"))
    log_dir = settings.log_dir if settings else None

    logger.remove()
    logger.add(
        sink=lambda msg: print(msg, end=""),
        level=level,
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
        f"{service_name} | {{thread.name}} | {{message}}",
        colorize=False,
        backtrace=False,
        diagnose=False,
    )

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        logger.add(
            path / f"{service_name}.log",
            level=level,
            rotation="7 days",
            retention="30 days",
            compression="zip",
            enqueue=True,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=logging.WARNING, force=True)


__all__ = ["logger", "configure_logging", "check_level", "InterceptHandler", "LOG_LEVEL_ENV"]
