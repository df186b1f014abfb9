from __future__ import annotations

import json
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import redis.asyncio as aioredis

from backoffice.logging import get_logger
from backoffice.storage.models import utcnow

logger = get_logger(__name__)

SessionData = Dict[str, Any]


class SessionStore(Protocol):
    """Server-side storage for per-browser session payloads."""

    async def get(self, session_id: str) -> Optional[SessionData]: ...

    async def set(self, session_id: str, data: SessionData, ttl: int) -> None: ...

    async def destroy(self, session_id: str) -> None: ...

    async def close(self) -> None: ...


class MemorySessionStore:
    """Process-local session storage with lazy expiry."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._items: Dict[str, Tuple[SessionData, datetime]] = {}
        self._lock = threading.Lock()

    async def get(self, session_id: str) -> Optional[SessionData]:
        with self._lock:
            item = self._items.get(session_id)
            if item is None:
                return None
            data, expires_at = item
            if expires_at <= self._clock():
                self._items.pop(session_id, None)
                return None
            # JSON round-trip keeps parity with the Redis backend
            return json.loads(json.dumps(data))

    async def set(self, session_id: str, data: SessionData, ttl: int) -> None:
        with self._lock:
            self._items[session_id] = (
                json.loads(json.dumps(data)),
                self._clock() + timedelta(seconds=max(1, ttl)),
            )

    async def destroy(self, session_id: str) -> None:
        with self._lock:
            self._items.pop(session_id, None)

    async def close(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class RedisSessionStore:
    """Redis-backed session storage; payloads are JSON with a native TTL."""

    KEY_PREFIX = "session:"

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def _key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}{session_id}"

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving requests."""
        from redis import Redis

        # Short-lived sync client so the async one is not bound to a temporary loop
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def get(self, session_id: str) -> Optional[SessionData]:
        raw = await self.client.get(self._key(session_id))
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("session_payload_corrupt", backend="redis")
            await self.destroy(session_id)
            return None
        return data if isinstance(data, dict) else None

    async def set(self, session_id: str, data: SessionData, ttl: int) -> None:
        await self.client.set(self._key(session_id), json.dumps(data), ex=max(1, ttl))

    async def destroy(self, session_id: str) -> None:
        await self.client.delete(self._key(session_id))

    async def close(self) -> None:
        """Close Redis connection pool. Call when shutting down or resetting runtime."""
        await self.client.aclose()
