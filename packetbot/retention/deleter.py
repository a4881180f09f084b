from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from packetbot.common.discord_client import ChatClient, ChatClientError, Message
from packetbot.common.logger import logger


@dataclass(slots=True)
class DeletionResult:
    attempted: int = 0
    deleted: int = 0
    failed: int = 0


def delete_messages(
    client: ChatClient,
    batch: Sequence[Message],
    where: str = "",
    dry_run: bool = False,
) -> DeletionResult:
    """Delete each message in ``batch`` independently; failures are logged and skipped."""

    result = DeletionResult()
    for message in batch:
        if dry_run:
            logger.info("[{}] dry run, would delete {}: {}", where, message.id, message.content)
            continue
        result.attempted += 1
        logger.debug("[{}] deleting {} from {}: {}", where, message.id, message.timestamp.isoformat(), message.content)
        try:
            client.delete_message(message.channel_id, message.id)
        except ChatClientError as exc:
            result.failed += 1
            logger.error("[{}] failed to delete message {}: {}", where, message.id, exc)
            continue
        result.deleted += 1
    if result.deleted:
        logger.info("[{}] removed {} expired message(s)", where, result.deleted)
    return result


__all__ = ["DeletionResult", "delete_messages"]
