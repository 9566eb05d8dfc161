"""Broker gateway - publishes domain events onto the durable queue.

Learn: the queue is a Redis stream (XADD) read through a consumer group
(XREADGROUP + XACK). Unlike plain Redis PUBLISH, stream entries stay in
Redis until a consumer acknowledges them, which gives the relay
at-least-once delivery across restarts on either side.

Lifecycle mirrors the app lifespan:
    connect()  at startup, before any mutation traffic
    publish()  after every successful message write
    close()    at shutdown, best effort

A failed connect() keeps the client around. publish() and ping() call
connect() again while the gateway is not ready, so a broker that was
down at startup is picked up by the next mutation without a restart.

A failed connect() keeps the client. publish() and ping() call connect()
again while the gateway is not ready, so a broker that was down at
startup is picked up on the next mutation without a restart.

Failures on publish are typed so the mutation service can surface them:
- BrokerUnavailable: not connected, connection refused, or no answer
  within `timeout` seconds
- BrokerRejected: Redis answered with an error reply
"""

import asyncio
from typing import Any, Optional

import redis.asyncio as aioredis
import structlog
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

from parley.broker.envelope import encode_envelope
from parley.config import settings

logger = structlog.get_logger()


class BrokerError(Exception):
    """Base class for publish failures. Carries what failed to go out."""

    def __init__(
        self,
        message: str,
        *,
        pattern: Optional[str] = None,
        event: Any = None,
    ):
        super().__init__(message)
        self.pattern = pattern
        self.event = event

    @property
    def message_id(self) -> Optional[int]:
        return getattr(self.event, "message_id", None)


class BrokerUnavailable(BrokerError):
    """The broker could not be reached in time."""


class BrokerRejected(BrokerError):
    """The broker refused the envelope."""


class BrokerGateway:
    """Thin client over one durable Redis stream."""

    def __init__(
        self,
        url: str,
        *,
        queue: str = "messages_queue",
        group: str = "parley-relay",
        timeout: float = 5.0,
        redis: Optional[aioredis.Redis] = None,
    ):
        self.url = url
        self.queue = queue
        self.group = group
        self.timeout = timeout
        self._redis = redis
        self._ready = False

    @classmethod
    def from_settings(cls) -> "BrokerGateway":
        return cls(
            settings.redis_url,
            queue=settings.broker_queue,
            group=settings.broker_group,
            timeout=settings.broker_timeout_seconds,
        )

    @property
    def connected(self) -> bool:
        return self._redis is not None and self._ready

    def client(self) -> aioredis.Redis:
        """The live Redis client (raises if connect() hasn't run)."""
        if self._redis is None:
            raise BrokerUnavailable("Broker not connected. Call connect() first.")
        return self._redis

    # ─── Lifecycle ──────────────────────────────────────

    async def connect(self) -> None:
        """Open the connection pool, verify it and ensure the consumer group."""
        if self._redis is None:
            self._redis = aioredis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
            )
        try:
            await asyncio.wait_for(self._redis.ping(), timeout=self.timeout)
            await self.ensure_group()
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            # redis-py reopens pool connections itself, so the client is kept
            self._ready = False
            raise BrokerUnavailable(
                f"Broker unreachable: {e or type(e).__name__}"
            ) from e
        self._ready = True
        logger.info("broker.connected", queue=self.queue, group=self.group)

    async def ensure_group(self) -> None:
        """Create the stream and consumer group if they don't exist yet.

        Learn: id="0" makes a brand-new group start from the beginning of
        the stream, so entries written before the first relay ever ran
        are still delivered.
        """
        try:
            await self.client().xgroup_create(
                self.queue, self.group, id="0", mkstream=True
            )
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    async def close(self) -> None:
        """Close the connection. Errors from an already-dead link are ignored."""
        if self._redis is None:
            return
        redis, self._redis = self._redis, None
        self._ready = False
        try:
            await redis.aclose()
        except (RedisError, OSError, RuntimeError) as e:
            logger.warning("broker.close_failed", error=str(e))

    async def ping(self) -> bool:
        try:
            if not self.connected:
                await self.connect()
            return bool(
                await asyncio.wait_for(self.client().ping(), timeout=self.timeout)
            )
        except (BrokerError, RedisError, OSError, asyncio.TimeoutError):
            return False

    # ─── Publish ────────────────────────────────────────

    async def publish(self, pattern: str, payload: Any) -> None:
        """Append one envelope to the queue.

        Raises BrokerUnavailable / BrokerRejected; the caller decides what
        a failed notification means for its request.
        """
        message_id = getattr(payload, "message_id", None)
        fields = encode_envelope(pattern, payload)

        if not self.connected:
            try:
                await self.connect()
            except BrokerUnavailable as e:
                logger.error(
                    "broker.publish_failed",
                    pattern=pattern,
                    message_id=message_id,
                    error=str(e),
                )
                raise BrokerUnavailable(
                    f"Broker not connected: {e}", pattern=pattern, event=payload
                ) from e

        try:
            entry_id = await asyncio.wait_for(
                self._redis.xadd(self.queue, fields),
                timeout=self.timeout,
            )
        except ResponseError as e:
            logger.error(
                "broker.publish_rejected",
                pattern=pattern,
                message_id=message_id,
                error=str(e),
            )
            raise BrokerRejected(
                f"Broker rejected {pattern}: {e}", pattern=pattern, event=payload
            ) from e
        except (
            RedisConnectionError,
            RedisTimeoutError,
            RedisError,
            OSError,
            asyncio.TimeoutError,
        ) as e:
            logger.error(
                "broker.publish_failed",
                pattern=pattern,
                message_id=message_id,
                error=str(e) or type(e).__name__,
            )
            raise BrokerUnavailable(
                f"Broker unavailable for {pattern}: {e or type(e).__name__}",
                pattern=pattern,
                event=payload,
            ) from e

        logger.info(
            "broker.published",
            pattern=pattern,
            message_id=message_id,
            entry_id=entry_id,
        )
