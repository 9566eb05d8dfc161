"""Broker listener - the delivery loop on the consuming side.

Learn: XREADGROUP with id ">" hands out entries never delivered to any
consumer of the group. Entries delivered to *this* consumer but not yet
acknowledged (we crashed mid-handling) sit in the pending list and are
only returned when reading with id "0". So the loop starts in recovery
mode, drains its own pending entries, then switches to ">" and blocks.

Every entry is acknowledged and deleted once handling was attempted,
whether the handler succeeded, failed or the entry was unreadable. That
makes processing at-most-once per delivery, while the transport itself
stays at-least-once.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import structlog
from redis.exceptions import RedisError, ResponseError

from parley.broker.envelope import BrokerMessage, EnvelopeError, decode_envelope
from parley.broker.gateway import BrokerError, BrokerGateway

logger = structlog.get_logger()

Handler = Callable[[BrokerMessage], Awaitable[None]]


@dataclass
class ListenerStats:
    """Runtime counters for the health endpoint."""
    delivered: int = 0
    invalid: int = 0
    errors: int = 0


class BrokerListener:
    """Reads the queue through the consumer group and calls `handler`."""

    def __init__(
        self,
        gateway: BrokerGateway,
        handler: Handler,
        *,
        consumer: str = "relay-1",
        block_ms: int = 5000,
        batch_size: int = 32,
        retry_delay: float = 1.0,
        max_retry_delay: float = 30.0,
    ):
        self.gateway = gateway
        self.handler = handler
        self.consumer = consumer
        self.block_ms = block_ms
        self.batch_size = batch_size
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.stats = ListenerStats()
        self._running = False
        self._recovering = True

    @property
    def running(self) -> bool:
        return self._running

    async def run(self) -> None:
        """Deliver entries until stop() is called or the task is cancelled.

        While the broker is unreachable the loop reconnects with a
        doubling delay, capped at `max_retry_delay`.
        """
        self._running = True
        self._recovering = True
        logger.info(
            "broker.listener_started",
            queue=self.gateway.queue,
            group=self.gateway.group,
            consumer=self.consumer,
        )
        delay = self.retry_delay
        try:
            while self._running:
                try:
                    if not self.gateway.connected:
                        await self.gateway.connect()
                    await self.poll_once()
                    delay = self.retry_delay
                except (BrokerError, RedisError, OSError) as e:
                    logger.warning(
                        "broker.listener_error", error=str(e), retry_in=delay
                    )
                    self.stats.errors += 1
                    self._recovering = True
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, self.max_retry_delay)
        finally:
            self._running = False
            logger.info("broker.listener_stopped", **self.get_stats())

    def stop(self) -> None:
        self._running = False

    async def poll_once(self) -> int:
        """Read and handle one batch. Returns how many entries were handled."""
        start_id = "0" if self._recovering else ">"
        entries = await self._read(start_id)
        if self._recovering and not entries:
            self._recovering = False
            return 0

        for entry_id, fields in entries:
            await self._deliver(entry_id, fields)
        return len(entries)

    async def _read(self, start_id: str) -> list[tuple[str, Optional[dict]]]:
        redis = self.gateway.client()
        try:
            response = await redis.xreadgroup(
                self.gateway.group,
                self.consumer,
                {self.gateway.queue: start_id},
                count=self.batch_size,
                block=self.block_ms if start_id == ">" else None,
            )
        except ResponseError as e:
            # Stream or group was removed under us (FLUSHDB, manual cleanup)
            if "NOGROUP" not in str(e):
                raise
            await self.gateway.ensure_group()
            return []

        entries: list[tuple[str, Optional[dict]]] = []
        for _stream, items in response or []:
            entries.extend(items)
        return entries

    async def _deliver(self, entry_id: str, fields: Optional[dict]) -> None:
        try:
            if not fields:
                # Pending entry whose body was already deleted
                logger.debug("broker.entry_empty", entry_id=entry_id)
                return
            message = decode_envelope(fields, entry_id=entry_id)
            await self.handler(message)
            self.stats.delivered += 1
        except EnvelopeError as e:
            logger.error("broker.envelope_invalid", entry_id=entry_id, error=str(e))
            self.stats.invalid += 1
        except Exception:
            logger.exception("broker.handler_crashed", entry_id=entry_id)
            self.stats.errors += 1
        finally:
            await self._ack(entry_id)

    async def _ack(self, entry_id: str) -> None:
        redis = self.gateway.client()
        await redis.xack(self.gateway.queue, self.gateway.group, entry_id)
        await redis.xdel(self.gateway.queue, entry_id)

    def get_stats(self) -> dict:
        return {
            "delivered": self.stats.delivered,
            "invalid": self.stats.invalid,
            "errors": self.stats.errors,
            "consumer": self.consumer,
        }
