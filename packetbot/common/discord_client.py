"""Discord REST client helper built on top of requests."""
from __future__ import annotations

import datetime as dt
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Protocol

import requests

from packetbot.common.logger import logger

GUILD_TEXT = 0

ReadyHandler = Callable[[], None]


class ChatClientError(RuntimeError):
    """A chat platform request failed."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


@dataclass(slots=True, frozen=True)
class Guild:
    id: str
    name: str


@dataclass(slots=True, frozen=True)
class Channel:
    id: str
    guild_id: str
    name: str
    type: int
    topic: str | None = None

    @property
    def is_text(self) -> bool:
        return self.type == GUILD_TEXT


@dataclass(slots=True, frozen=True)
class Message:
    id: str
    channel_id: str
    timestamp: dt.datetime
    pinned: bool = False
    content: str = ""


class ChatClient(Protocol):
    """Capabilities the retention engine needs from the chat platform."""

    def guild_ids(self) -> List[str]: ...

    def get_guild(self, guild_id: str) -> Guild: ...

    def get_guild_channels(self, guild_id: str) -> List[Channel]: ...

    def get_messages(self, channel_id: str, *, limit: int, before: str | None = None) -> List[Message]: ...

    def delete_message(self, channel_id: str, message_id: str) -> None: ...

    def on_ready(self, handler: ReadyHandler) -> None: ...


def parse_timestamp(value: str) -> dt.datetime:
    """Parse a Discord ISO-8601 timestamp into an aware UTC datetime."""

    parsed = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed.astimezone(dt.timezone.utc)


class DiscordClient:
    """Blocking Discord REST client with a readiness signal.

    Every thread gets its own ``requests.Session``; a rate limit reported to
    any thread holds back requests from all of them until it expires.
    """

    def __init__(
        self,
        token: str,
        api_base: str = "https://discord.com/api/v10",
        timeout: float = 10.0,
        max_attempts: int = 3,
        session_factory: Callable[[], requests.Session] = requests.Session,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._headers = {
            "Authorization": f"Bot {token}",
            "User-Agent": "DiscordBot (https://github.com/packetbot/packetbot, 1.0)",
        }
        self._session_factory = session_factory
        self._local = threading.local()
        self._sessions: list[requests.Session] = []
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._max_attempts = max(1, max_attempts)
        self._monotonic = monotonic
        self._blocked_until = 0.0
        self._rate_lock = threading.Lock()
        self._ready_handlers: list[ReadyHandler] = []
        self._ready = threading.Event()
        self._lock = threading.Lock()
        self.user: Dict[str, Any] | None = None

    # Lifecycle ------------------------------------------------------------------

    def connect(self) -> None:
        """Verify the credential, load the guild list and fire the ready handlers."""

        self.user = self._request("GET", "/users/@me")
        guilds = self.guild_ids()
        logger.info(
            "Connected to Discord as {} in {} guild(s)", (self.user or {}).get("username", "unknown"), len(guilds)
        )
        with self._lock:
            self._ready.set()
            handlers = list(self._ready_handlers)
        for handler in handlers:
            handler()

    def disconnect(self) -> None:
        self._ready.clear()
        with self._lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.close()

    def on_ready(self, handler: ReadyHandler) -> None:
        """Register a callback fired once the client is ready.

        Handlers registered after readiness run immediately.
        """

        with self._lock:
            if not self._ready.is_set():
                self._ready_handlers.append(handler)
                return
        handler()

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    # Platform API ---------------------------------------------------------------

    def guild_ids(self) -> List[str]:
        ids: List[str] = []
        after: str | None = None
        while True:
            params: Dict[str, Any] = {"limit": 200}
            if after:
                params["after"] = after
            page = self._request("GET", "/users/@me/guilds", params=params)
            if not page:
                return ids
            ids.extend(str(item["id"]) for item in page)
            if len(page) < 200:
                return ids
            after = ids[-1]

    def get_guild(self, guild_id: str) -> Guild:
        payload = self._request("GET", f"/guilds/{guild_id}")
        return Guild(id=str(payload["id"]), name=payload.get("name", ""))

    def get_guild_channels(self, guild_id: str) -> List[Channel]:
        payload = self._request("GET", f"/guilds/{guild_id}/channels")
        return [
            Channel(
                id=str(item["id"]),
                guild_id=str(item.get("guild_id", guild_id)),
                name=item.get("name", ""),
                type=int(item.get("type", -1)),
                topic=item.get("topic"),
            )
            for item in payload
        ]

    def get_messages(self, channel_id: str, *, limit: int, before: str | None = None) -> List[Message]:
        params: Dict[str, Any] = {"limit": limit}
        if before:
            params["before"] = before
        payload = self._request("GET", f"/channels/{channel_id}/messages", params=params)
        try:
            return [
                Message(
                    id=str(item["id"]),
                    channel_id=str(item.get("channel_id", channel_id)),
                    timestamp=parse_timestamp(item["timestamp"]),
                    pinned=bool(item.get("pinned", False)),
                    content=item.get("content", ""),
                )
                for item in payload
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise ChatClientError(f"Malformed message payload from channel {channel_id}: {exc}") from exc

    def delete_message(self, channel_id: str, message_id: str) -> None:
        self._request("DELETE", f"/channels/{channel_id}/messages/{message_id}")

    # Transport ------------------------------------------------------------------

    @property
    def session(self) -> requests.Session:
        """The calling thread's session, created on first use."""

        session = getattr(self._local, "session", None)
        if session is None:
            session = self._session_factory()
            session.headers.update(self._headers)
            self._local.session = session
            with self._lock:
                self._sessions.append(session)
        return session

    def _wait_for_rate_limit(self) -> None:
        with self._rate_lock:
            delay = self._blocked_until - self._monotonic()
        if delay > 0:
            time.sleep(delay)

    def _block_for(self, seconds: float) -> None:
        with self._rate_lock:
            self._blocked_until = max(self._blocked_until, self._monotonic() + seconds)

    def _request(self, method: str, path: str, params: Dict[str, Any] | None = None) -> Any:
        url = f"{self._api_base}{path}"
        for attempt in range(1, self._max_attempts + 1):
            self._wait_for_rate_limit()
            try:
                response = self.session.request(method, url, params=params, timeout=self._timeout)
            except requests.RequestException as exc:
                raise ChatClientError(f"{method} {path} failed: {exc}") from exc

            if response.status_code == 429 and attempt < self._max_attempts:
                wait = self._retry_after(response)
                logger.debug("Rate limited on {} {}; holding requests for {:.2f}s", method, path, wait)
                self._block_for(wait)
                continue
            if response.status_code >= 400:
                raise ChatClientError(
                    f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                    status=response.status_code,
                )
            if response.status_code == 204 or not response.content:
                return None
            return response.json()
        return None

    @staticmethod
    def _retry_after(response: requests.Response) -> float:
        try:
            return max(float(response.json().get("retry_after", 1.0)), 0.0)
        except (ValueError, AttributeError):
            pass
        try:
            return max(float(response.headers.get("Retry-After", 1.0)), 0.0)
        except (TypeError, ValueError):
            return 1.0


__all__ = [
    "ChatClient",
    "ChatClientError",
    "Channel",
    "DiscordClient",
    "GUILD_TEXT",
    "Guild",
    "Message",
    "parse_timestamp",
]
