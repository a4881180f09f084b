"""Backward history scanning and expiry selection for one channel."""
from __future__ import annotations

import datetime as dt
from typing import Iterable, Iterator, List

from packetbot.common.discord_client import ChatClient, Message
from packetbot.common.logger import logger
from packetbot.retention.policy import Policy

PAGE_SIZE = 100
MAX_PER_PASS = 5


def _snowflake(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return -1


def scan_history(
    client: ChatClient,
    channel_id: str,
    page_size: int = PAGE_SIZE,
    where: str = "",
) -> Iterator[Message]:
    """Yield a channel's messages newest to oldest, one page at a time.

    Each page is requested strictly before the oldest message seen so far.
    Pages are fetched lazily, so a consumer that stops early stops paging.
    The scan ends on the first empty page.
    """

    cursor: str | None = None
    while True:
        page = client.get_messages(channel_id, limit=page_size, before=cursor)
        if not page:
            logger.debug("[{}] reached the beginning of the channel", where or channel_id)
            return
        previous = cursor
        for message in page:
            cursor = message.id
            yield message
        if previous is not None and _snowflake(page[-1].id) >= _snowflake(previous):
            logger.warning(
                "[{}] history cursor did not move backward at {}; stopping scan", where or channel_id, page[-1].id
            )
            return


def select_expired(
    messages: Iterable[Message],
    policy: Policy,
    now: dt.datetime | None = None,
    max_per_pass: int = MAX_PER_PASS,
) -> List[Message]:
    """Collect up to ``max_per_pass`` unpinned messages older than the policy allows."""

    now = now or dt.datetime.now(dt.timezone.utc)
    cutoff = now - dt.timedelta(days=policy.expire_in_days)
    batch: List[Message] = []
    if max_per_pass <= 0:
        return batch
    for message in messages:
        if message.pinned:
            continue
        if message.timestamp < cutoff:
            batch.append(message)
            if len(batch) >= max_per_pass:
                break
    return batch


__all__ = ["MAX_PER_PASS", "PAGE_SIZE", "scan_history", "select_expired"]
