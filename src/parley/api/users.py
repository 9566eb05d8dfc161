"""User API routes.

Learn: the relation endpoints (a user's conversations and messages) go
through the per-request batch loaders, the same path the conversation
and message listings use for their nested fields.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from parley.auth.dependencies import CurrentIdentity, get_current_user
from parley.db.engine import get_db
from parley.db.loaders import Loaders, get_loaders
from parley.schemas.conversation import ConversationRead
from parley.schemas.message import MessageRead
from parley.schemas.user import UserRead, UserUpdate
from parley.services.user_service import UserNotFoundError, UserService

router = APIRouter(prefix="/users")


def _user_svc(db: AsyncSession = Depends(get_db)) -> UserService:
    return UserService(db)


@router.get("", response_model=list[UserRead])
async def list_users(
    ids: Optional[list[int]] = Query(None, description="Only these user ids"),
    svc: UserService = Depends(_user_svc),
):
    return await svc.list_users(ids)


@router.patch("/me", response_model=UserRead)
async def update_me(
    body: UserUpdate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: UserService = Depends(_user_svc),
):
    try:
        return await svc.update_profile(identity.id, name=body.name, avatar=body.avatar)
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/{user_id}", response_model=UserRead)
async def get_user(user_id: int, loaders: Loaders = Depends(get_loaders)):
    user = await loaders.users.load(user_id)
    if not user:
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")
    return user


@router.get("/{user_id}/conversations", response_model=list[ConversationRead])
async def list_user_conversations(
    user_id: int, loaders: Loaders = Depends(get_loaders)
):
    if not await loaders.users.load(user_id):
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")
    return await loaders.conversations_by_user.load(user_id)


@router.get("/{user_id}/messages", response_model=list[MessageRead])
async def list_user_messages(user_id: int, loaders: Loaders = Depends(get_loaders)):
    if not await loaders.users.load(user_id):
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")
    return await loaders.messages_by_user.load(user_id)
