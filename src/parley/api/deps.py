"""Dependencies for the process-wide realtime objects.

Learn: the live feed registry, presence tracker, broker gateway and relay
are built in create_app() and stored on app.state. Routes get them
through these functions instead of importing module globals, so every
test app gets its own isolated set. HTTPConnection covers both HTTP
requests and WebSocket connections.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import HTTPConnection

from parley.broker.gateway import BrokerGateway
from parley.db.engine import get_db
from parley.realtime.presence import PresenceTracker
from parley.realtime.registry import LiveFeedRegistry
from parley.relay.consumer import EventRelay
from parley.services.message_service import MessageService
from parley.services.notifier import MessageNotifier


def get_feed(connection: HTTPConnection) -> LiveFeedRegistry:
    return connection.app.state.feed


def get_presence(connection: HTTPConnection) -> PresenceTracker:
    return connection.app.state.presence


def get_gateway(connection: HTTPConnection) -> BrokerGateway:
    return connection.app.state.gateway


def get_relay(connection: HTTPConnection) -> EventRelay:
    return connection.app.state.relay


def get_notifier(
    gateway: BrokerGateway = Depends(get_gateway),
    feed: LiveFeedRegistry = Depends(get_feed),
) -> MessageNotifier:
    return MessageNotifier(gateway, feed)


def get_message_service(
    db: AsyncSession = Depends(get_db),
    notifier: MessageNotifier = Depends(get_notifier),
) -> MessageService:
    return MessageService(db, notifier)
