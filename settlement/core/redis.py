"""
Async Redis client used for consumer idempotency markers.

The notification consumer records every processed event_id here so a Kafka
redelivery (at-least-once) does not produce a duplicate notification.
"""

import time
from typing import Any, Awaitable, Callable

from redis.exceptions import RedisError, ConnectionError, TimeoutError
import redis.asyncio as redis

from settlement.core.config import settings
from settlement.core.logging import get_logger
from settlement.core.metrics import (
    redis_commands_total,
    redis_command_duration_seconds,
    redis_errors_total,
)

logger = get_logger(__name__)


class RedisClient:
    """Async Redis client wrapper with metrics and error classification"""

    def __init__(self):
        self.client: redis.Redis | None = None

    async def connect(self):
        """
        Connect to Redis

        Raises:
            ConnectionError: If unable to connect to Redis
        """
        try:
            self.client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_keepalive=True,
                health_check_interval=30,
            )
            await self.client.ping()
            logger.info(
                "redis_connected", host=settings.REDIS_HOST, port=settings.REDIS_PORT
            )
        except Exception as e:
            logger.error("redis_connect_failed", error_message=str(e))
            raise

    async def disconnect(self):
        if self.client:
            await self.client.aclose()
            logger.info("redis_disconnected")

    async def _run(self, command: str, key: str, call: Callable[[], Awaitable[Any]]) -> Any:
        if not self.client:
            raise RuntimeError("Redis client not connected")

        start_time = time.time()
        try:
            result = await call()
        except (ConnectionError, TimeoutError) as e:
            redis_errors_total.labels(error_type="connection").inc()
            logger.error("redis_command_failed", command=command, key=key, error_message=str(e))
            raise
        except RedisError as e:
            redis_errors_total.labels(error_type="other").inc()
            logger.error("redis_command_failed", command=command, key=key, error_message=str(e))
            raise

        redis_commands_total.labels(command=command).inc()
        redis_command_duration_seconds.labels(command=command).observe(time.time() - start_time)
        return result

    async def ping(self) -> bool:
        """True if Redis is responsive"""
        if not self.client:
            return False
        try:
            await self.client.ping()
            return True
        except RedisError:
            return False

    async def exists(self, key: str) -> bool:
        return bool(await self._run("exists", key, lambda: self.client.exists(key)))

    async def set(self, key: str, value: str, ttl: int | None = None) -> bool:
        if ttl:
            await self._run("setex", key, lambda: self.client.setex(key, ttl, value))
        else:
            await self._run("set", key, lambda: self.client.set(key, value))
        return True


# Global Redis client instance
redis_client = RedisClient()
