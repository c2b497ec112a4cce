"""Resilient Redis client with graceful degradation.

When Redis is unavailable, operations return None/defaults instead of
raising exceptions. Routing keeps working without the heuristic cache and
selector outcomes are dropped rather than failing a scrape.
"""

import asyncio
import logging
import time

import redis.asyncio as aioredis

from scrapegate.config import settings

logger = logging.getLogger(__name__)


class ResilientRedis:
    """Wraps an async Redis client with reconnection and degradation.

    - Connection errors and timeouts return the operation's default
    - Reconnects with exponential backoff (1s, 2s, 4s, ..., max 30s)
    - Circuit breaker: after 5 consecutive failures, skip Redis for 10s
    """

    CB_THRESHOLD = 5
    CB_COOLDOWN = 10.0
    MAX_BACKOFF = 30.0

    def __init__(self, url: str | None = None, max_connections: int | None = None):
        self._url = url or settings.REDIS_URL
        self._max_connections = max_connections or settings.REDIS_MAX_CONNECTIONS
        self._client: aioredis.Redis | None = None
        self._consecutive_failures = 0
        self._circuit_open_until = 0.0
        self._reconnect_delay = 1.0

    def _create_client(self) -> aioredis.Redis:
        return aioredis.from_url(
            self._url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=self._max_connections,
            socket_connect_timeout=5,
            socket_timeout=5,
        )

    @property
    def client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = self._create_client()
        return self._client

    @property
    def is_degraded(self) -> bool:
        return self._consecutive_failures >= self.CB_THRESHOLD

    def _is_circuit_open(self) -> bool:
        if self._consecutive_failures >= self.CB_THRESHOLD:
            if time.monotonic() < self._circuit_open_until:
                return True
            # Cooldown expired, allow a probe
            self._consecutive_failures = 0
        return False

    def _record_success(self):
        self._consecutive_failures = 0
        self._reconnect_delay = 1.0

    def _record_failure(self):
        self._consecutive_failures += 1
        if self._consecutive_failures >= self.CB_THRESHOLD:
            self._circuit_open_until = time.monotonic() + self.CB_COOLDOWN
            logger.warning(
                f"Redis circuit breaker OPEN, skipping for {self.CB_COOLDOWN}s"
            )

    async def _reconnect(self):
        """Drop the current client and build a fresh one after a backoff."""
        old, self._client = self._client, None
        if old is not None:
            try:
                await old.aclose()
            except (aioredis.RedisError, OSError) as e:
                logger.debug(f"Redis close during reconnect failed: {e}")
        await asyncio.sleep(self._reconnect_delay)
        self._reconnect_delay = min(self._reconnect_delay * 2, self.MAX_BACKOFF)
        self._client = self._create_client()

    async def _safe_op(self, op_name, coro_func, *args, default=None, **kwargs):
        """Execute a Redis operation with degradation on failure."""
        if self._is_circuit_open():
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
            await self._reconnect()
            return default
        except Exception as e:
            # Non-connection errors still propagate
            logger.debug(f"Redis {op_name} error: {e}")
            raise

    async def get(self, key):
        return await self._safe_op("get", self.client.get, key)

    async def setex(self, name, time_val, value):
        return await self._safe_op(
            "setex", self.client.setex, name, time_val, value, default=False
        )

    async def delete(self, *keys):
        return await self._safe_op("delete", self.client.delete, *keys, default=0)

    async def lpush(self, key, *values):
        return await self._safe_op("lpush", self.client.lpush, key, *values, default=0)

    async def ltrim(self, key, start, end):
        return await self._safe_op(
            "ltrim", self.client.ltrim, key, start, end, default=False
        )

    async def ping(self):
        return await self._safe_op("ping", self.client.ping, default=False)

    async def close(self):
        if self._client:
            try:
                await self._client.aclose()
            except (aioredis.RedisError, OSError) as e:
                logger.debug(f"Redis close failed: {e}")
            self._client = None
