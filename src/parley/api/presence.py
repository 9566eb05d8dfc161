"""Presence API routes."""

from fastapi import APIRouter, Depends

from parley.api.deps import get_presence
from parley.auth.dependencies import CurrentIdentity, get_current_user
from parley.realtime.presence import PresenceTracker
from parley.schemas.presence import OnlineUsers, PresenceRead

router = APIRouter(prefix="/presence")


def _online(presence: PresenceTracker) -> OnlineUsers:
    return OnlineUsers(
        online=[PresenceRead.model_validate(e) for e in presence.get_online_users()]
    )


@router.get("", response_model=OnlineUsers)
async def get_online_users(presence: PresenceTracker = Depends(get_presence)):
    return _online(presence)


@router.post("/online", response_model=OnlineUsers)
async def set_online(
    identity: CurrentIdentity = Depends(get_current_user),
    presence: PresenceTracker = Depends(get_presence),
):
    presence.set_online(identity.id)
    return _online(presence)


@router.post("/offline", response_model=OnlineUsers)
async def set_offline(
    identity: CurrentIdentity = Depends(get_current_user),
    presence: PresenceTracker = Depends(get_presence),
):
    presence.set_offline(identity.id)
    return _online(presence)
