"""Message API routes.

Learn: mutations commit first and notify second. When the broker publish
fails the message is already stored, so the response is a 502 that says
so ({"detail", "message_id", "persisted": true, "pattern", "event"})
instead of a plain error. The client keeps the message and can retry
the notification by posting {"pattern", "event"} to /messages/relay,
whatever kind of mutation failed. POST /messages/{id}/relay re-sends the
creation notice of a stored message.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from parley.api.deps import get_message_service
from parley.auth.dependencies import CurrentIdentity, get_current_user
from parley.broker.gateway import BrokerError
from parley.db.loaders import Loaders, get_loaders
from parley.schemas.message import (
    MessageCreate,
    MessageDetail,
    MessageRead,
    MessageUpdate,
    NotificationRetry,
    RelayResult,
)
from parley.schemas.user import UserRead
from parley.services.conversation_service import ConversationNotFoundError
from parley.services.message_service import (
    InvalidEventError,
    MessageNotFoundError,
    MessageService,
    MessageStillExistsError,
)
from parley.services.user_service import UserNotFoundError

router = APIRouter()


async def broker_error_handler(request: Request, exc: BrokerError) -> JSONResponse:
    """Registered on the app in create_app()."""
    return JSONResponse(
        status_code=502,
        content={
            "detail": f"Message saved but notification failed: {exc}",
            "message_id": exc.message_id,
            "persisted": True,
            "pattern": exc.pattern,
            "event": exc.event.to_wire() if hasattr(exc.event, "to_wire") else None,
        },
    )


@router.get("/messages", response_model=list[MessageRead])
async def list_messages(
    conversation_id: Optional[int] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    svc: MessageService = Depends(get_message_service),
):
    return await svc.list_messages(conversation_id=conversation_id, limit=limit)


@router.get("/messages/{message_id}", response_model=MessageDetail)
async def get_message(
    message_id: int,
    svc: MessageService = Depends(get_message_service),
    loaders: Loaders = Depends(get_loaders),
):
    try:
        message = await svc.get_message(message_id)
    except MessageNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    detail = MessageDetail.model_validate(message)
    author = await loaders.users.load(message.user_id)
    if author:
        detail.author = UserRead.model_validate(author)
    return detail


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageRead,
    status_code=201,
)
async def send_message(
    conversation_id: int,
    body: MessageCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MessageService = Depends(get_message_service),
):
    try:
        return await svc.send_message(conversation_id, identity.id, body.content)
    except (ConversationNotFoundError, UserNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.patch("/messages/{message_id}", response_model=MessageRead)
async def update_message(
    message_id: int,
    body: MessageUpdate,
    svc: MessageService = Depends(get_message_service),
):
    try:
        return await svc.update_message(message_id, body.content)
    except MessageNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/messages/{message_id}", response_model=MessageRead)
async def delete_message(
    message_id: int,
    svc: MessageService = Depends(get_message_service),
):
    try:
        return await svc.delete_message(message_id)
    except MessageNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/messages/relay", response_model=RelayResult)
async def retry_notification(
    body: NotificationRetry,
    svc: MessageService = Depends(get_message_service),
):
    """Re-send a notification returned by a 502 partial failure."""
    try:
        message_id, delivered = await svc.republish(body.pattern, body.event)
    except InvalidEventError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except (MessageNotFoundError, UserNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except MessageStillExistsError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return RelayResult(message_id=message_id, delivered=delivered)


@router.post("/messages/{message_id}/relay", response_model=RelayResult)
async def relay_message(
    message_id: int,
    svc: MessageService = Depends(get_message_service),
):
    """Re-send the creation notification for a stored message."""
    try:
        delivered = await svc.relay_message(message_id)
    except (MessageNotFoundError, UserNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    return RelayResult(message_id=message_id, delivered=delivered)
