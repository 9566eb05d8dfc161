"""Pydantic schemas for messages."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from parley.schemas.user import UserRead


class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=10_000)


class MessageUpdate(BaseModel):
    content: str = Field(..., min_length=1, max_length=10_000)


class MessageRead(BaseModel):
    id: int
    conversation_id: int
    user_id: int
    content: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class MessageDetail(MessageRead):
    author: Optional[UserRead] = None


class RelayResult(BaseModel):
    message_id: int
    delivered: int


class NotificationRetry(BaseModel):
    """The failed notification from a 502 response, sent back as is."""
    pattern: str
    event: dict[str, Any]
