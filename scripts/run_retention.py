"""Entry point for the packetbot retention service."""

from __future__ import annotations

import argparse
import sys
import time

from packetbot.common.config import (
    DEFAULT_CONFIG_PATH,
    ConfigError,
    ConfigLoader,
    LoggingSettings,
    load_discord_settings,
    load_logging_settings,
    load_retention_settings,
)
from packetbot.common.discord_client import ChatClientError, DiscordClient
from packetbot.common.logger import configure_logging, logger
from packetbot.retention.enforcer import RetentionEnforcer
from packetbot.retention.scheduler import RetentionScheduler


def main() -> int:
    """Connect to Discord and expire messages on a fixed interval."""

    parser = argparse.ArgumentParser(description="Run packetbot channel retention")
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help="Path to packetbot YAML configuration",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log expired messages without deleting them",
    )
    args = parser.parse_args()

    try:
        cfg = ConfigLoader.load(args.config)
        logging_settings = load_logging_settings(cfg)
        discord_settings = load_discord_settings(cfg)
        retention_settings = load_retention_settings(cfg)
    except ConfigError as exc:
        configure_logging("packetbot", LoggingSettings())
        logger.error("config: {}", exc)
        return 1

    configure_logging("packetbot", logging_settings)
    logger.info("startup")
    if args.dry_run:
        retention_settings.dry_run = True

    client = DiscordClient(
        token=discord_settings.token,
        api_base=discord_settings.api_base,
        timeout=discord_settings.timeout_s,
        max_attempts=discord_settings.max_attempts,
    )
    enforcer = RetentionEnforcer(client, retention_settings)
    scheduler = RetentionScheduler(client, enforcer, interval_s=retention_settings.interval_s)
    scheduler.start()

    try:
        client.connect()
    except ChatClientError as exc:
        logger.error("Unable to connect to Discord: {}", exc)
        return 1

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Stopping retention service")
    finally:
        scheduler.stop()
        client.disconnect()
    return 0


if __name__ == "__main__":
    sys.exit(main())
