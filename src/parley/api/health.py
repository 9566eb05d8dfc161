"""Health check endpoint.

Learn: verifies the database and the broker are reachable, and reports
the relay and live feed counters so a stuck pipeline is visible without
attaching a debugger.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from parley import __version__
from parley.api.deps import get_feed, get_gateway, get_presence, get_relay
from parley.broker.gateway import BrokerGateway
from parley.db.engine import get_db
from parley.realtime.presence import PresenceTracker
from parley.realtime.registry import LiveFeedRegistry
from parley.relay.consumer import EventRelay

router = APIRouter()


@router.get("/health")
async def health_check(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: BrokerGateway = Depends(get_gateway),
    feed: LiveFeedRegistry = Depends(get_feed),
    presence: PresenceTracker = Depends(get_presence),
    relay: EventRelay = Depends(get_relay),
):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok"}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except SQLAlchemyError as e:
        checks["database"] = f"error: {e}"

    checks["broker"] = "ok" if await gateway.ping() else "error: unreachable"

    status = "healthy" if all(v == "ok" for v in checks.values()) else "degraded"

    listener = getattr(request.app.state, "listener", None)
    return {
        "status": status,
        "version": __version__,
        **checks,
        "relay": {
            **relay.get_stats(),
            "listener": listener.get_stats() if listener else None,
        },
        "feed": {
            "topics": len(feed.topics()),
            "subscribers": feed.subscriber_count(),
        },
        "presence": {"online": len(presence.get_online_users())},
    }
