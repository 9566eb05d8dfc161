"""Domain event models - the three message lifecycle facts.

Learn: DomainEvent is a closed tagged union. The tag is the broker
pattern each class is bound to (see events/types.py), not a field on the
payload, so the JSON on the wire is exactly the event body.

Wire names are camelCase (conversationId, participantIds) because
subscription clients key off them. Python code uses snake_case; the
alias generator bridges the two and populate_by_name lets either form in.

Only MessageCreated carries its audience. MessageUpdated/MessageDeleted
omit the participant set, so the relay routes them to global topics.
"""

from datetime import datetime
from typing import ClassVar, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from parley.events.types import MESSAGE_CREATED, MESSAGE_DELETED, MESSAGE_UPDATED


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        """JSON-safe dict with camelCase keys."""
        return self.model_dump(by_alias=True, mode="json")


class EventAuthor(_WireModel):
    id: int
    username: str
    email: str


class EventConversation(_WireModel):
    id: int
    participant_ids: set[int] = Field(default_factory=set)


class MessageCreated(_WireModel):
    pattern: ClassVar[str] = MESSAGE_CREATED

    id: int
    conversation_id: int
    user_id: int
    content: str
    created_at: datetime
    updated_at: datetime
    author: EventAuthor
    conversation: EventConversation

    @property
    def message_id(self) -> int:
        return self.id


class MessageUpdated(_WireModel):
    pattern: ClassVar[str] = MESSAGE_UPDATED

    message_id: int
    content: str
    conversation_id: int
    user_id: int


class MessageDeleted(_WireModel):
    pattern: ClassVar[str] = MESSAGE_DELETED

    message_id: int
    conversation_id: int
    user_id: int


DomainEvent = Union[MessageCreated, MessageUpdated, MessageDeleted]

EVENT_TYPES: dict[str, type[DomainEvent]] = {
    MessageCreated.pattern: MessageCreated,
    MessageUpdated.pattern: MessageUpdated,
    MessageDeleted.pattern: MessageDeleted,
}
