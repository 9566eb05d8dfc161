"""Pydantic schemas for presence."""

from datetime import datetime

from pydantic import BaseModel


class PresenceRead(BaseModel):
    user_id: int
    last_seen: datetime

    model_config = {"from_attributes": True}


class OnlineUsers(BaseModel):
    online: list[PresenceRead]
