"""Message service - message CRUD and its notifications.

Learn: a mutation runs in this order:
1. Write and commit the row. From here on the change is durable.
2. For a new message, snapshot the conversation's participant ids.
   This is best effort: if the lookup fails the event goes out with an
   empty audience rather than failing a write that already happened.
3. Hand the event to MessageNotifier (broker path + direct path).

A BrokerError from step 3 propagates to the caller. The row stays
committed; the API reports a partial failure carrying the failed event,
and the client can retry just the notification with republish().
"""

from typing import Any, Optional, assert_never

import structlog
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from parley.db.models import Conversation, Message, User, utcnow
from parley.events.models import (
    EVENT_TYPES,
    EventAuthor,
    EventConversation,
    MessageCreated,
    MessageDeleted,
    MessageUpdated,
)
from parley.services.conversation_service import (
    ConversationNotFoundError,
    ConversationService,
)
from parley.services.notifier import MessageNotifier
from parley.services.user_service import UserNotFoundError

logger = structlog.get_logger()


class MessageNotFoundError(Exception):
    """Raised when a message id doesn't exist."""


class InvalidEventError(Exception):
    """Raised when a retried notification is not a valid domain event."""


class MessageStillExistsError(Exception):
    """Raised when a deletion notice is retried for a message that exists."""


class MessageService:
    def __init__(self, db: AsyncSession, notifier: MessageNotifier):
        self.db = db
        self.notifier = notifier
        self.conversations = ConversationService(db)

    # ─── Queries ────────────────────────────────────────

    async def get_message(self, message_id: int) -> Message:
        message = await self.db.get(Message, message_id)
        if not message:
            raise MessageNotFoundError(f"Message {message_id} not found")
        return message

    async def list_messages(
        self,
        conversation_id: Optional[int] = None,
        user_id: Optional[int] = None,
        limit: int = 100,
    ) -> list[Message]:
        q = select(Message).order_by(Message.created_at, Message.id).limit(limit)
        if conversation_id is not None:
            q = q.where(Message.conversation_id == conversation_id)
        if user_id is not None:
            q = q.where(Message.user_id == user_id)
        result = await self.db.execute(q)
        return list(result.scalars().all())

    # ─── Mutations ──────────────────────────────────────

    async def send_message(
        self, conversation_id: int, user_id: int, content: str
    ) -> Message:
        if not await self.db.get(Conversation, conversation_id):
            raise ConversationNotFoundError(
                f"Conversation {conversation_id} not found"
            )
        author = await self._author(user_id)

        message = Message(
            conversation_id=conversation_id, user_id=user_id, content=content
        )
        self.db.add(message)
        await self.db.commit()
        logger.info(
            "message.sent",
            message_id=message.id,
            conversation_id=conversation_id,
            user_id=user_id,
        )

        await self._notify_created(message, author)
        return message

    async def update_message(self, message_id: int, content: str) -> Message:
        message = await self.get_message(message_id)
        message.content = content
        message.updated_at = utcnow()
        await self.db.commit()
        logger.info("message.updated", message_id=message.id)

        await self.notifier.notify(_updated_event(message))
        return message

    async def delete_message(self, message_id: int) -> Message:
        message = await self.get_message(message_id)
        await self.db.delete(message)
        await self.db.commit()
        logger.info("message.deleted", message_id=message_id)

        await self.notifier.notify(
            MessageDeleted(
                message_id=message_id,
                conversation_id=message.conversation_id,
                user_id=message.user_id,
            )
        )
        return message

    async def relay_message(self, message_id: int) -> int:
        """Re-send the creation notification of a stored message."""
        message = await self.get_message(message_id)
        author = await self._author(message.user_id)
        return await self._notify_created(message, author)

    async def republish(
        self, pattern: str, payload: dict[str, Any]
    ) -> tuple[int, int]:
        """Re-send a notification whose broker publish failed.

        `pattern` and `payload` are what a partial-failure response
        returned. Created and updated events are rebuilt from the stored
        row, so a late retry never resurrects stale content. A deletion is
        re-sent as given, but only while the row is really gone. Returns
        (message_id, direct deliveries).
        """
        model = EVENT_TYPES.get(pattern)
        if model is None:
            raise InvalidEventError(f"Unknown event pattern {pattern!r}")
        try:
            event = model.model_validate(payload)
        except ValidationError as e:
            raise InvalidEventError(f"Invalid {pattern} payload: {e}") from e

        logger.info("message.republish", pattern=pattern, message_id=event.message_id)
        if isinstance(event, MessageCreated):
            return event.id, await self.relay_message(event.id)
        if isinstance(event, MessageUpdated):
            message = await self.get_message(event.message_id)
            return message.id, await self.notifier.notify(_updated_event(message))
        if isinstance(event, MessageDeleted):
            if await self.db.get(Message, event.message_id):
                raise MessageStillExistsError(
                    f"Message {event.message_id} still exists"
                )
            return event.message_id, await self.notifier.notify(event)
        assert_never(event)

    # ─── Helpers ────────────────────────────────────────

    async def _author(self, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if not user:
            raise UserNotFoundError(f"User {user_id} not found")
        return user

    async def _participant_ids(self, conversation_id: int) -> set[int]:
        try:
            return await self.conversations.participant_ids(conversation_id)
        except SQLAlchemyError as e:
            logger.error(
                "message.participants_unavailable",
                conversation_id=conversation_id,
                error=str(e),
            )
            return set()

    async def _notify_created(self, message: Message, author: User) -> int:
        participant_ids = await self._participant_ids(message.conversation_id)
        event = MessageCreated(
            id=message.id,
            conversation_id=message.conversation_id,
            user_id=message.user_id,
            content=message.content,
            created_at=message.created_at,
            updated_at=message.updated_at,
            author=EventAuthor(id=author.id, username=author.name, email=author.email),
            conversation=EventConversation(
                id=message.conversation_id, participant_ids=participant_ids
            ),
        )
        return await self.notifier.notify(event)


def _updated_event(message: Message) -> MessageUpdated:
    return MessageUpdated(
        message_id=message.id,
        content=message.content,
        conversation_id=message.conversation_id,
        user_id=message.user_id,
    )
