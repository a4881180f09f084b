from __future__ import annotations

import datetime as dt
from typing import Any, Callable, Dict, Iterator, List

import pytest

from packetbot.common.discord_client import GUILD_TEXT, Channel, ChatClientError, Guild, Message
from packetbot.common.logger import logger

NOW = dt.datetime(2024, 3, 1, 12, 0, tzinfo=dt.timezone.utc)


class FakeChatClient:
    """In-memory chat platform keeping each channel's history newest-first."""

    def __init__(self) -> None:
        self.guilds: Dict[str, Guild] = {}
        self.channels: Dict[str, List[Channel]] = {}
        self.history: Dict[str, List[Message]] = {}
        self.calls: list[tuple[Any, ...]] = []
        self.deleted: list[str] = []
        self.fail: set[tuple[str, str]] = set()
        self.ready_handlers: list[Callable[[], None]] = []
        self._next_id = 1000

    # Fixture helpers ------------------------------------------------------------

    def add_guild(self, guild_id: str, name: str) -> Guild:
        guild = Guild(id=guild_id, name=name)
        self.guilds[guild_id] = guild
        self.channels.setdefault(guild_id, [])
        return guild

    def add_channel(self, guild_id: str, channel_id: str, name: str, topic: str | None, type: int = GUILD_TEXT) -> Channel:
        channel = Channel(id=channel_id, guild_id=guild_id, name=name, type=type, topic=topic)
        self.channels[guild_id].append(channel)
        self.history.setdefault(channel_id, [])
        return channel

    def post(self, channel_id: str, age: dt.timedelta, pinned: bool = False, now: dt.datetime = NOW) -> Message:
        """Add a message; later posts get larger ids, so post oldest first."""

        self._next_id += 1
        message = Message(
            id=str(self._next_id),
            channel_id=channel_id,
            timestamp=now - age,
            pinned=pinned,
            content=f"message {self._next_id}",
        )
        self.history[channel_id].insert(0, message)
        return message

    def calls_to(self, name: str) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == name]

    def _check(self, name: str, key: str) -> None:
        if (name, key) in self.fail:
            raise ChatClientError(f"{name} {key} failed", status=500)

    # ChatClient -----------------------------------------------------------------

    def guild_ids(self) -> List[str]:
        self.calls.append(("guild_ids",))
        self._check("guild_ids", "")
        return list(self.guilds)

    def get_guild(self, guild_id: str) -> Guild:
        self.calls.append(("get_guild", guild_id))
        self._check("get_guild", guild_id)
        return self.guilds[guild_id]

    def get_guild_channels(self, guild_id: str) -> List[Channel]:
        self.calls.append(("get_guild_channels", guild_id))
        self._check("get_guild_channels", guild_id)
        return list(self.channels[guild_id])

    def get_messages(self, channel_id: str, *, limit: int, before: str | None = None) -> List[Message]:
        self.calls.append(("get_messages", channel_id, limit, before))
        self._check("get_messages", channel_id)
        messages = self.history.get(channel_id, [])
        if before is not None:
            messages = [message for message in messages if int(message.id) < int(before)]
        return messages[:limit]

    def delete_message(self, channel_id: str, message_id: str) -> None:
        self.calls.append(("delete_message", channel_id, message_id))
        self._check("delete_message", message_id)
        self.history[channel_id] = [m for m in self.history[channel_id] if m.id != message_id]
        self.deleted.append(message_id)

    def on_ready(self, handler: Callable[[], None]) -> None:
        self.ready_handlers.append(handler)

    def fire_ready(self) -> None:
        for handler in list(self.ready_handlers):
            handler()


@pytest.fixture()
def fake_client() -> FakeChatClient:
    return FakeChatClient()


@pytest.fixture()
def now() -> dt.datetime:
    return NOW


@pytest.fixture()
def log_messages() -> Iterator[list[tuple[str, str]]]:
    """Capture loguru output as ``(level, message)`` tuples."""

    messages: list[tuple[str, str]] = []
    handler_id = logger.add(
        lambda msg: messages.append((msg.record["level"].name, msg.record["message"])),
        level="DEBUG",
    )
    yield messages
    logger.remove(handler_id)
