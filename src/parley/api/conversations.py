"""Conversation API routes.

Learn: list endpoints return ConversationDetail, which nests participants
and the last message time. Those are resolved through the batch loaders
in two queries total (one per loader), however many conversations are
listed. Loaders share the request's session, so each load_many() is
awaited before the next one starts.
"""

from typing import Sequence

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from parley.auth.dependencies import CurrentIdentity, get_current_user
from parley.db.engine import get_db
from parley.db.loaders import Loaders, get_loaders
from parley.db.models import Conversation
from parley.schemas.conversation import (
    ConversationCreate,
    ConversationDetail,
    ConversationRead,
    ConversationRename,
)
from parley.schemas.user import UserRead
from parley.services.conversation_service import (
    ConversationNotFoundError,
    ConversationService,
)
from parley.services.user_service import UserNotFoundError

router = APIRouter(prefix="/conversations")


def _conv_svc(db: AsyncSession = Depends(get_db)) -> ConversationService:
    return ConversationService(db)


async def _details(
    conversations: Sequence[Conversation], loaders: Loaders
) -> list[ConversationDetail]:
    ids = [c.id for c in conversations]
    participants = await loaders.participants_by_conversation.load_many(ids)
    messages = await loaders.messages_by_conversation.load_many(ids)

    details = []
    for conversation, users, msgs in zip(conversations, participants, messages):
        # Validate the plain columns only; the ORM relations are not loaded
        base = ConversationRead.model_validate(conversation)
        details.append(
            ConversationDetail(
                **base.model_dump(),
                participants=[UserRead.model_validate(u) for u in users],
                last_message_at=msgs[-1].created_at if msgs else None,
            )
        )
    return details


@router.get("", response_model=list[ConversationDetail])
async def list_conversations(
    svc: ConversationService = Depends(_conv_svc),
    loaders: Loaders = Depends(get_loaders),
):
    return await _details(await svc.list_conversations(), loaders)


@router.get("/mine", response_model=list[ConversationDetail])
async def list_my_conversations(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: ConversationService = Depends(_conv_svc),
    loaders: Loaders = Depends(get_loaders),
):
    return await _details(await svc.list_for_user(identity.id), loaders)


@router.get("/by-participants", response_model=list[ConversationDetail])
async def find_by_participants(
    ids: list[int] = Query(..., description="Every participant must be in this set"),
    svc: ConversationService = Depends(_conv_svc),
    loaders: Loaders = Depends(get_loaders),
):
    return await _details(await svc.find_by_participants(ids), loaders)


@router.get("/{conversation_id}", response_model=ConversationDetail)
async def get_conversation(
    conversation_id: int,
    svc: ConversationService = Depends(_conv_svc),
    loaders: Loaders = Depends(get_loaders),
):
    try:
        conversation = await svc.get_conversation(conversation_id)
    except ConversationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    [detail] = await _details([conversation], loaders)
    return detail


@router.post("", response_model=ConversationDetail, status_code=201)
async def create_conversation(
    body: ConversationCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: ConversationService = Depends(_conv_svc),
    loaders: Loaders = Depends(get_loaders),
):
    """Create a conversation. The caller is always added as a participant."""
    try:
        conversation = await svc.create_conversation(
            identity.id, body.participant_ids, name=body.name
        )
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    [detail] = await _details([conversation], loaders)
    return detail


@router.patch("/{conversation_id}", response_model=ConversationDetail)
async def rename_conversation(
    conversation_id: int,
    body: ConversationRename,
    svc: ConversationService = Depends(_conv_svc),
    loaders: Loaders = Depends(get_loaders),
):
    try:
        conversation = await svc.rename(conversation_id, body.name)
    except ConversationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    [detail] = await _details([conversation], loaders)
    return detail


@router.delete("/{conversation_id}", status_code=204)
async def delete_conversation(
    conversation_id: int,
    svc: ConversationService = Depends(_conv_svc),
):
    try:
        await svc.delete_conversation(conversation_id)
    except ConversationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
