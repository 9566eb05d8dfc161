"""Event relay - broker envelope -> live feed publishes.

Learn: one handler per event kind. A handler never lets an exception out
to the listener: failures are wrapped in ConsumerHandlerError, logged and
counted, and the listener acknowledges the envelope either way. There is
no dead-letter queue, so a failed relay is simply lost for that copy
(the mutation service published a direct copy too).
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import structlog

from parley.broker.envelope import BrokerMessage
from parley.events.models import MessageCreated, MessageDeleted, MessageUpdated
from parley.events.types import MESSAGE_CREATED, MESSAGE_DELETED, MESSAGE_UPDATED
from parley.realtime.fanout import routes_for
from parley.realtime.registry import LiveFeedRegistry

logger = structlog.get_logger()


class ConsumerHandlerError(Exception):
    """A relay handler failed for one envelope."""

    def __init__(self, pattern: str, entry_id: str | None, cause: BaseException):
        super().__init__(f"{pattern} handler failed: {cause}")
        self.pattern = pattern
        self.entry_id = entry_id
        self.cause = cause


@dataclass
class RelayStats:
    handled: Counter = field(default_factory=Counter)
    failed: Counter = field(default_factory=Counter)
    published: int = 0


class EventRelay:
    """Dispatches broker messages to per-kind handlers."""

    def __init__(self, feed: LiveFeedRegistry):
        self.feed = feed
        self.stats = RelayStats()
        self._handlers: dict[str, Callable[[BrokerMessage], Awaitable[int]]] = {
            MESSAGE_CREATED: self.handle_message_created,
            MESSAGE_UPDATED: self.handle_message_updated,
            MESSAGE_DELETED: self.handle_message_deleted,
        }

    async def handle(self, message: BrokerMessage) -> None:
        """Listener callback. Never raises."""
        handler = self._handlers.get(message.pattern)
        if handler is None:
            logger.warning("relay.unknown_pattern", pattern=message.pattern)
            self.stats.failed[message.pattern] += 1
            return

        try:
            try:
                delivered = await handler(message)
            except Exception as e:
                raise ConsumerHandlerError(message.pattern, message.entry_id, e) from e
        except ConsumerHandlerError as e:
            logger.error(
                "relay.handler_failed",
                pattern=e.pattern,
                entry_id=e.entry_id,
                error=str(e.cause),
                exc_info=e.cause,
            )
            self.stats.failed[message.pattern] += 1
            return

        self.stats.handled[message.pattern] += 1
        logger.debug(
            "relay.handled",
            pattern=message.pattern,
            entry_id=message.entry_id,
            delivered=delivered,
        )

    # ─── Handlers ───────────────────────────────────────

    async def handle_message_created(self, message: BrokerMessage) -> int:
        event = _expect(message, MessageCreated)
        if not event.conversation.participant_ids:
            logger.warning("relay.no_participants", message_id=event.id)
        return self._publish(event)

    async def handle_message_updated(self, message: BrokerMessage) -> int:
        return self._publish(_expect(message, MessageUpdated))

    async def handle_message_deleted(self, message: BrokerMessage) -> int:
        return self._publish(_expect(message, MessageDeleted))

    def _publish(self, event) -> int:
        delivered = 0
        for topic, payload in routes_for(event):
            delivered += self.feed.publish(topic, payload)
            self.stats.published += 1
        return delivered

    def get_stats(self) -> dict:
        return {
            "handled": dict(self.stats.handled),
            "failed": dict(self.stats.failed),
            "published": self.stats.published,
        }


def _expect(message: BrokerMessage, kind: type):
    if not isinstance(message.payload, kind):
        raise TypeError(
            f"{message.pattern} carries {type(message.payload).__name__}, "
            f"expected {kind.__name__}"
        )
    return message.payload
