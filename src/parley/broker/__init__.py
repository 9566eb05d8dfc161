"""Broker gateway - durable hand-off between producers and the relay.

Learn: events flow through two stages:
1. Mutation service -> BrokerGateway.publish -> Redis stream (durable)
2. Redis stream -> BrokerListener -> EventRelay -> live feed topics

The stream is consumed through a consumer group, so entries published
while no relay is running wait in Redis until one acknowledges them.
"""

from parley.broker.envelope import BrokerMessage, EnvelopeError
from parley.broker.gateway import (
    BrokerError,
    BrokerGateway,
    BrokerRejected,
    BrokerUnavailable,
)
from parley.broker.listener import BrokerListener

__all__ = [
    "BrokerError",
    "BrokerGateway",
    "BrokerListener",
    "BrokerMessage",
    "BrokerRejected",
    "BrokerUnavailable",
    "EnvelopeError",
]
