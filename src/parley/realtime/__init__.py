"""Real-time delivery - the in-process half of the notification pipeline.

Learn: events reach clients in two hops:
1. Relay or notifier -> LiveFeedRegistry.publish(topic, payload)
2. Subscription queue -> WebSocket frame -> client

Topics are plain strings (see topics.py). fanout.routes_for decides which
topics an event lands on; presence publishes its own snapshots.
"""

from parley.realtime.fanout import routes_for
from parley.realtime.presence import PresenceEntry, PresenceTracker
from parley.realtime.registry import LiveFeedRegistry, Subscription

__all__ = [
    "LiveFeedRegistry",
    "PresenceEntry",
    "PresenceTracker",
    "Subscription",
    "routes_for",
]
