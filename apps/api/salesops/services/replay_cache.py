"""Bounded replay cache for webhook delivery ids.

Best-effort dedup of redelivered webhooks. The in-memory backend is per
process; the Redis backend is shared across instances and bounded by TTL.
Dial processing stays idempotent either way, so a miss here is harmless.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Protocol

import redis

from salesops.core.config import settings
from salesops.core.redis_client import get_sync_redis_client

logger = logging.getLogger(__name__)

REDIS_KEY_PREFIX = "webhook:replay:"


class ReplayCache(Protocol):
    def seen(self, key: str) -> bool:
        """Whether the id was recorded as processed."""

    def add(self, key: str) -> None:
        """Record the id as processed."""


class InMemoryReplayCache:
    """Thread-safe LRU set holding the most recent `capacity` ids."""

    def __init__(self, capacity: int = 1000):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._entries: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()

    def seen(self, key: str) -> bool:
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                return True
            return False

    def add(self, key: str) -> None:
        with self._lock:
            self._entries[key] = None
            self._entries.move_to_end(key)
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)


class RedisReplayCache:
    """Shared replay cache; each id expires after ttl_seconds."""

    def __init__(self, client: redis.Redis, ttl_seconds: int = 86400, prefix: str = REDIS_KEY_PREFIX):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def seen(self, key: str) -> bool:
        try:
            return bool(self.client.exists(f"{self.prefix}{key}"))
        except redis.RedisError:
            logger.warning("Replay cache lookup failed, treating delivery as new", exc_info=True)
            return False

    def add(self, key: str) -> None:
        try:
            self.client.set(f"{self.prefix}{key}", 1, ex=self.ttl_seconds)
        except redis.RedisError:
            logger.warning("Replay cache write failed", exc_info=True)


_replay_cache: ReplayCache | None = None


def build_replay_cache() -> ReplayCache:
    backend = settings.WEBHOOK_REPLAY_BACKEND.strip().lower()
    if backend == "redis":
        client = get_sync_redis_client()
        if client is not None:
            return RedisReplayCache(client, ttl_seconds=settings.WEBHOOK_REPLAY_TTL_SECONDS)
        logger.warning("WEBHOOK_REPLAY_BACKEND=redis but REDIS_URL is not set; using in-memory cache")
    elif backend != "memory":
        raise ValueError(f"Unknown WEBHOOK_REPLAY_BACKEND: {settings.WEBHOOK_REPLAY_BACKEND}")
    return InMemoryReplayCache(capacity=settings.WEBHOOK_REPLAY_CAPACITY)


def get_replay_cache() -> ReplayCache:
    global _replay_cache
    if _replay_cache is None:
        _replay_cache = build_replay_cache()
    return _replay_cache


def reset_replay_cache() -> None:
    global _replay_cache
    _replay_cache = None
