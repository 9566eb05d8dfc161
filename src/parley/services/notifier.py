"""Message notifier - the two delivery paths for one domain event.

Learn: every mutation notifies subscribers twice:
1. Broker path: gateway.publish() -> queue -> relay -> live feed
2. Direct path: routes_for(event) -> live feed, in this process

Both use the same routes, so a client can receive the same payload twice
and must treat delivery as at-least-once. The direct path always runs,
even when the broker publish failed; the broker error is re-raised only
afterwards so the caller can report it.
"""

import structlog

from parley.broker.gateway import BrokerError, BrokerGateway
from parley.events.models import DomainEvent
from parley.realtime.fanout import routes_for
from parley.realtime.registry import LiveFeedRegistry

logger = structlog.get_logger()


class MessageNotifier:
    def __init__(self, gateway: BrokerGateway, feed: LiveFeedRegistry):
        self.gateway = gateway
        self.feed = feed

    async def notify(self, event: DomainEvent) -> int:
        """Publish through both paths. Returns direct deliveries.

        Raises the BrokerError from the broker path, after the direct
        path has run.
        """
        broker_error: BrokerError | None = None
        try:
            await self.gateway.publish(event.pattern, event)
        except BrokerError as e:
            broker_error = e

        delivered = self.publish_direct(event)
        if broker_error is not None:
            raise broker_error
        return delivered

    def publish_direct(self, event: DomainEvent) -> int:
        delivered = 0
        for topic, payload in routes_for(event):
            delivered += self.feed.publish(topic, payload)
        logger.debug(
            "notifier.direct_published",
            pattern=event.pattern,
            message_id=event.message_id,
            delivered=delivered,
        )
        return delivered
