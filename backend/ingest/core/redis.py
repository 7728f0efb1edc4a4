"""Resilient Redis client with graceful degradation.

This is the shared key-value store behind the rate limiter and the robots.txt
cache. When Redis is unavailable, operations return None/defaults instead of
raising exceptions, so ingestion keeps working without quotas or caching.

Anything exposing the same four coroutines (``get``, ``setex``, ``incr``,
``expire``) can stand in for it; tests inject an in-memory fake.
"""

import logging
import time

import redis.asyncio as aioredis

from ingest.config import settings
from ingest.core.metrics import redis_connection_status

logger = logging.getLogger(__name__)


class ResilientRedis:
    """Wraps an async Redis client with lazy reconnection and degradation.

    - All operations catch ConnectionError/TimeoutError and return defaults
    - A failed connection is dropped and rebuilt on a later call, never
      slept on inside the request path
    - Circuit breaker: after 5 consecutive failures, skip Redis for 10s
    - An empty REDIS_URL disables the store entirely
    """

    CB_THRESHOLD = 5
    CB_COOLDOWN = 10.0

    def __init__(self, url: str | None = None):
        self._url = settings.REDIS_URL if url is None else url
        self._client: aioredis.Redis | None = None
        self._consecutive_failures = 0
        self._circuit_open_until = 0.0

    @property
    def enabled(self) -> bool:
        return bool(self._url)

    def _create_client(self) -> aioredis.Redis:
        return aioredis.from_url(
            self._url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            socket_connect_timeout=2,
            socket_timeout=2,
        )

    @property
    def client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = self._create_client()
        return self._client

    def _is_circuit_open(self) -> bool:
        if self._consecutive_failures >= self.CB_THRESHOLD:
            if time.monotonic() < self._circuit_open_until:
                return True
            # Cooldown expired, allow a trial call
            self._consecutive_failures = 0
        return False

    def _record_success(self):
        self._consecutive_failures = 0
        redis_connection_status.set(1)

    def _record_failure(self):
        self._consecutive_failures += 1
        redis_connection_status.set(0)
        if self._consecutive_failures >= self.CB_THRESHOLD:
            self._circuit_open_until = time.monotonic() + self.CB_COOLDOWN
            logger.warning(
                f"Redis circuit breaker OPEN, skipping for {self.CB_COOLDOWN}s"
            )

    async def _drop_client(self):
        client, self._client = self._client, None
        if client is not None:
            try:
                await client.aclose()
            except (aioredis.RedisError, OSError) as e:
                logger.debug(f"Redis close raised: {e}")

    async def _safe_op(self, op_name, coro_func, *args, default=None, **kwargs):
        """Execute a Redis operation with degradation on failure."""
        if not self.enabled or self._is_circuit_open():
            return default

        try:
            result = await coro_func(*args, **kwargs)
            self._record_success()
            return result
        except (
            aioredis.ConnectionError,
            aioredis.TimeoutError,
            ConnectionRefusedError,
            OSError,
        ) as e:
            self._record_failure()
            logger.warning(f"Redis {op_name} failed (degraded): {e}")
            await self._drop_client()
            return default

    async def get(self, key):
        if not self.enabled:
            return None
        return await self._safe_op("get", self.client.get, key)

    async def setex(self, name, time_val, value):
        if not self.enabled:
            return False
        return await self._safe_op(
            "setex", self.client.setex, name, time_val, value, default=False
        )

    async def incr(self, key, amount=1):
        if not self.enabled:
            return 0
        return await self._safe_op("incr", self.client.incr, key, amount, default=0)

    async def expire(self, key, seconds):
        if not self.enabled:
            return False
        return await self._safe_op(
            "expire", self.client.expire, key, seconds, default=False
        )

    async def ping(self):
        if not self.enabled:
            return False
        return await self._safe_op("ping", self.client.ping, default=False)

    async def close(self):
        await self._drop_client()


# Module-level singleton
redis_client = ResilientRedis()
