"""Retention policy tags embedded in channel topics.

A topic carries options as bracketed ``[key: value]`` tags, for example
``"General chatter [expire: 7d]"``. Only ``expire`` is interpreted today;
unknown keys are ignored so new tags can be introduced without breaking
existing channels. Additional keys are supported by registering a handler
in ``TAG_HANDLERS``.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterator

from packetbot.common.logger import logger


@dataclass(slots=True, frozen=True)
class Policy:
    expire_in_days: int = 0

    @property
    def active(self) -> bool:
        return self.expire_in_days > 0


TagHandler = Callable[[Policy, str, str], Policy]


def iter_tags(text: str | None) -> Iterator[str]:
    """Yield the contents of each non-nesting ``[...]`` tag in ``text``.

    An opening bracket restarts the current tag, so only the innermost pair
    of brackets counts; stray closing brackets are ignored.
    """

    source = text or ""
    start: int | None = None
    for index, char in enumerate(source):
        if char == "[":
            start = index + 1
        elif char == "]" and start is not None:
            yield source[start:index]
            start = None


def _parse_expire(policy: Policy, value: str, where: str) -> Policy:
    if not value.endswith("d"):
        logger.warning("Ignoring expire tag in {} because it's not in Nd format: {!r}", where, value)
        return policy
    days = value[:-1]
    if not (days.isascii() and days.isdigit()):
        logger.warning("Ignoring expire tag in {} because it's not an integer of days: {!r}", where, value)
        return policy
    logger.debug("[{}]: expire in {} days", where, int(days))
    return replace(policy, expire_in_days=int(days))


TAG_HANDLERS: Dict[str, TagHandler] = {
    "expire": _parse_expire,
}


def parse_policy(topic: str | None, where: str = "") -> Policy | None:
    """Return the retention policy declared in ``topic``, if any.

    Tags are applied in order, so when a key repeats the last valid value
    wins. Returns ``None`` when no tag yields a positive expiry.
    """

    policy = Policy()
    for tag in iter_tags(topic):
        parts = tag.split(":")
        if len(parts) != 2:
            continue
        key, value = parts[0].strip(), parts[1].strip()
        handler = TAG_HANDLERS.get(key)
        if handler is None:
            continue
        policy = handler(policy, value, where or "<topic>")
    return policy if policy.active else None


__all__ = ["Policy", "TAG_HANDLERS", "iter_tags", "parse_policy"]
