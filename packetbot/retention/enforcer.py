"""One retention pass across every guild and text channel the bot can see."""
from __future__ import annotations

import datetime as dt
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, fields
from typing import Callable, List

from packetbot.common.config import RetentionSettings
from packetbot.common.discord_client import Channel, ChatClient, ChatClientError, Guild, Message
from packetbot.common.logger import logger
from packetbot.retention.deleter import delete_messages
from packetbot.retention.policy import Policy, parse_policy
from packetbot.retention.scanner import scan_history, select_expired

Clock = Callable[[], dt.datetime]


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass(slots=True)
class PassReport:
    guilds: int = 0
    guild_failures: int = 0
    channels_scanned: int = 0
    channels_skipped: int = 0
    channel_failures: int = 0
    selected: int = 0
    deleted: int = 0
    delete_failures: int = 0

    def merge(self, other: PassReport) -> None:
        for field in fields(self):
            setattr(self, field.name, getattr(self, field.name) + getattr(other, field.name))


class RetentionEnforcer:
    """Applies channel topic retention policies to message history."""

    def __init__(self, client: ChatClient, settings: RetentionSettings | None = None, clock: Clock = utcnow) -> None:
        self._client = client
        self._settings = settings or RetentionSettings()
        self._clock = clock

    # Public API -----------------------------------------------------------------

    def run_pass(self) -> PassReport:
        """Visit every guild once, enforcing each text channel's policy."""

        report = PassReport()
        try:
            guild_ids = self._client.guild_ids()
        except ChatClientError as exc:
            logger.error("Unable to enumerate guilds: {}", exc)
            report.guild_failures += 1
            return report

        workers = min(self._settings.concurrency, len(guild_ids))
        if workers <= 1:
            for guild_id in guild_ids:
                report.merge(self.enforce_guild(guild_id))
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="retention-guild") as pool:
                for guild_report in pool.map(self.enforce_guild, guild_ids):
                    report.merge(guild_report)

        logger.info(
            "Retention pass done: {} guild(s), {} channel(s) with policy, {} deleted, {} failure(s)",
            report.guilds,
            report.channels_scanned,
            report.deleted,
            report.guild_failures + report.channel_failures + report.delete_failures,
        )
        return report

    def enforce_guild(self, guild_id: str) -> PassReport:
        report = PassReport(guilds=1)
        try:
            guild = self._client.get_guild(guild_id)
            channels = self._client.get_guild_channels(guild_id)
        except ChatClientError as exc:
            logger.error("Skipping guild {} this pass: {}", guild_id, exc)
            report.guild_failures += 1
            return report

        for channel in channels:
            if not channel.is_text:
                continue
            report.merge(self.enforce_channel(guild, channel))
        return report

    def enforce_channel(self, guild: Guild, channel: Channel) -> PassReport:
        report = PassReport()
        where = f"{guild.name}/#{channel.name}"
        policy = parse_policy(channel.topic, where=where)
        if policy is None:
            logger.debug("[{}]: no expiry", where)
            report.channels_skipped += 1
            return report

        report.channels_scanned += 1
        try:
            batch = self.collect_expired(channel, policy, where)
        except ChatClientError as exc:
            logger.error("[{}] skipping channel this pass, history fetch failed: {}", where, exc)
            report.channel_failures += 1
            return report

        report.selected += len(batch)
        if len(batch) >= self._settings.max_per_pass:
            logger.debug("[{}] {} or more messages to delete, will come back later", where, len(batch))
        elif batch:
            logger.info("[{}] reached the beginning with {} to remove", where, len(batch))

        result = delete_messages(self._client, batch, where=where, dry_run=self._settings.dry_run)
        report.deleted += result.deleted
        report.delete_failures += result.failed
        return report

    def collect_expired(self, channel: Channel, policy: Policy, where: str = "") -> List[Message]:
        """Scan a channel backward and return its current deletion batch."""

        history = scan_history(self._client, channel.id, page_size=self._settings.page_size, where=where)
        try:
            return select_expired(history, policy, now=self._clock(), max_per_pass=self._settings.max_per_pass)
        finally:
            history.close()


__all__ = ["PassReport", "RetentionEnforcer", "utcnow"]
