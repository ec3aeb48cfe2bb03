"""Time-bounded set of inbound event ids already taken for processing."""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import redis.asyncio as redis_async

from deskbot.logging_config import get_logger

logger = get_logger("dedup_cache")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def build_inbound_event_id(
    message_id: str | None,
    conversation_id: str | None,
    timestamp: int | str | None = None,
) -> str:
    """Provider message id, else sender plus provider timestamp, else a fresh uuid (never deduplicated)."""
    if message_id and message_id.strip():
        return message_id.strip()
    if conversation_id and timestamp is not None:
        return f"{conversation_id}:{timestamp}"
    return str(uuid.uuid4())


class DedupCache(ABC):
    """``claim`` must run before any other processing of an inbound event."""

    @abstractmethod
    async def seen(self, event_id: str) -> bool: ...

    @abstractmethod
    async def mark_seen(self, event_id: str) -> None: ...

    @abstractmethod
    async def claim(self, event_id: str) -> bool:
        """Mark ``event_id`` and return True if this caller is the first to see it."""

    def sweep(self) -> int:
        return 0


class InMemoryDedupCache(DedupCache):
    def __init__(self, ttl_seconds: float = 3600, clock: Optional[Clock] = None):
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or utc_now
        self._entries: dict[str, datetime] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _is_live(self, event_id: str, now: datetime) -> bool:
        first_seen_at = self._entries.get(event_id)
        return first_seen_at is not None and now - first_seen_at <= self.ttl

    async def seen(self, event_id: str) -> bool:
        return self._is_live(event_id, self._clock())

    async def mark_seen(self, event_id: str) -> None:
        now = self._clock()
        if not self._is_live(event_id, now):
            self._entries[event_id] = now

    async def claim(self, event_id: str) -> bool:
        # No await between check and set, so this is atomic on the event loop.
        now = self._clock()
        if self._is_live(event_id, now):
            return False
        self._entries[event_id] = now
        return True

    def sweep(self) -> int:
        now = self._clock()
        expired = [event_id for event_id, first_seen in self._entries.items() if now - first_seen > self.ttl]
        for event_id in expired:
            del self._entries[event_id]
        if expired:
            logger.info("Dedup cache swept", extra={"context": {"removed": len(expired), "size": len(self._entries)}})
        return len(expired)


class RedisDedupCache(DedupCache):
    """Shared backend for multi-instance deployments; Redis expires the keys."""

    def __init__(self, client, ttl_seconds: float = 3600, prefix: str = "deskbot:dedup"):
        self.client = client
        self.ttl_seconds = int(ttl_seconds)
        self.prefix = prefix

    def _key(self, event_id: str) -> str:
        return f"{self.prefix}:{event_id}"

    async def seen(self, event_id: str) -> bool:
        try:
            return bool(await self.client.exists(self._key(event_id)))
        except Exception as e:
            logger.warning(f"Dedup redis unavailable: {e}")
            return False

    async def mark_seen(self, event_id: str) -> None:
        try:
            await self.client.set(self._key(event_id), "1", ex=self.ttl_seconds, nx=True)
        except Exception as e:
            logger.warning(f"Dedup redis unavailable: {e}")

    async def claim(self, event_id: str) -> bool:
        try:
            was_set = await self.client.set(self._key(event_id), "1", ex=self.ttl_seconds, nx=True)
        except Exception as e:
            # A duplicate may slip through while Redis is down.
            logger.warning(f"Dedup redis unavailable, processing event: {e}")
            return True
        return bool(was_set)


def build_dedup_cache(settings) -> DedupCache:
    if settings.redis_url:
        client = redis_async.Redis.from_url(settings.redis_url, decode_responses=True, socket_timeout=0.5)
        logger.info("Using Redis dedup cache")
        return RedisDedupCache(client, ttl_seconds=settings.dedup_ttl_seconds)
    return InMemoryDedupCache(ttl_seconds=settings.dedup_ttl_seconds)
