"""Pydantic schemas for conversations."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from parley.schemas.user import UserRead


class ConversationCreate(BaseModel):
    participant_ids: list[int] = Field(default_factory=list)
    name: Optional[str] = Field(None, max_length=200)


class ConversationRename(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class ConversationRead(BaseModel):
    id: int
    name: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ConversationDetail(ConversationRead):
    """Conversation with participants and the time of its last message."""
    participants: list[UserRead] = []
    last_message_at: Optional[datetime] = None
