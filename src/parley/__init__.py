"""Parley - real-time chat backend.

Users authenticate, form multi-party conversations, exchange messages
and receive live updates. New messages are relayed through a durable
broker queue and fanned out to every participant's live feed.
"""

__version__ = "0.1.0"
