"""Conversation service - conversations and their participant sets.

Learn: the participant set is the audience of every message. It is read
here for two reasons: listing (which conversations is user X in?) and
fan-out (who should receive message M?). The second one runs on every
send, so participant_ids() selects only the join table.
"""

from typing import Iterable, Optional

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from parley.db.models import Conversation, User, conversation_participants, utcnow
from parley.services.user_service import UserNotFoundError


class ConversationNotFoundError(Exception):
    """Raised when a conversation id doesn't exist."""


class ConversationService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_conversation(
        self,
        creator_id: int,
        participant_ids: Iterable[int],
        name: Optional[str] = None,
    ) -> Conversation:
        """Create a conversation. The creator is always a participant."""
        wanted = set(participant_ids) | {creator_id}
        result = await self.db.execute(select(User).where(User.id.in_(wanted)))
        users = list(result.scalars().all())
        missing = wanted - {u.id for u in users}
        if missing:
            raise UserNotFoundError(f"Users not found: {sorted(missing)}")

        conversation = Conversation(name=name, participants=users)
        self.db.add(conversation)
        await self.db.commit()
        return conversation

    async def get_conversation(self, conversation_id: int) -> Conversation:
        conversation = await self.db.get(Conversation, conversation_id)
        if not conversation:
            raise ConversationNotFoundError(
                f"Conversation {conversation_id} not found"
            )
        return conversation

    async def list_conversations(self) -> list[Conversation]:
        result = await self.db.execute(select(Conversation).order_by(Conversation.id))
        return list(result.scalars().all())

    async def list_for_user(self, user_id: int) -> list[Conversation]:
        """Conversations where `user_id` is a participant."""
        result = await self.db.execute(
            select(Conversation)
            .join(
                conversation_participants,
                conversation_participants.c.conversation_id == Conversation.id,
            )
            .where(conversation_participants.c.user_id == user_id)
            .order_by(Conversation.id)
        )
        return list(result.scalars().all())

    async def find_by_participants(self, user_ids: Iterable[int]) -> list[Conversation]:
        """Conversations whose every participant is in `user_ids`.

        Learn: "every" is expressed as "no participant outside the set",
        a NOT EXISTS subquery over the join table.
        """
        ids = set(user_ids)
        outsider = exists().where(
            conversation_participants.c.conversation_id == Conversation.id,
            conversation_participants.c.user_id.not_in(ids),
        )
        result = await self.db.execute(
            select(Conversation).where(~outsider).order_by(Conversation.id)
        )
        return list(result.scalars().all())

    async def rename(self, conversation_id: int, name: str) -> Conversation:
        conversation = await self.get_conversation(conversation_id)
        conversation.name = name
        conversation.updated_at = utcnow()
        await self.db.commit()
        return conversation

    async def delete_conversation(self, conversation_id: int) -> None:
        """Delete a conversation with its messages and participant links."""
        result = await self.db.execute(
            select(Conversation)
            .where(Conversation.id == conversation_id)
            .options(
                selectinload(Conversation.messages),
                selectinload(Conversation.participants),
            )
        )
        conversation = result.scalars().first()
        if not conversation:
            raise ConversationNotFoundError(
                f"Conversation {conversation_id} not found"
            )
        await self.db.delete(conversation)
        await self.db.commit()

    async def participant_ids(self, conversation_id: int) -> set[int]:
        result = await self.db.execute(
            select(conversation_participants.c.user_id).where(
                conversation_participants.c.conversation_id == conversation_id
            )
        )
        return set(result.scalars().all())
