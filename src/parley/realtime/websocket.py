"""WebSocket endpoint - live subscriptions for clients.

Learn: a client opens one socket at /ws?token=JWT and multiplexes any
number of subscriptions over it:

    -> {"type": "subscribe", "id": "1", "subscription": "messageAdded"}
    <- {"type": "next", "id": "1", "payload": {"messageAdded": {...}}}
    -> {"type": "unsubscribe", "id": "1"}
    -> {"type": "ping"}
    <- {"type": "pong"}

Each subscription gets a LiveFeedRegistry handle and a forwarding task
that copies its payloads onto the socket. The receive loop handles
client frames. When the socket closes, every subscription it opened is
closed with it; there is no other timeout on a subscription.
"""

import asyncio
import json
from typing import Any, Optional

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from parley.auth.dependencies import CurrentIdentity, identity_from_token
from parley.auth.jwt import TokenError
from parley.realtime.registry import LiveFeedRegistry, Subscription
from parley.realtime.topics import topic_for_subscription

logger = structlog.get_logger()
router = APIRouter()

AUTH_FAILED = 4001


class SubscriptionSession:
    """The subscriptions of one socket, keyed by client-chosen id."""

    def __init__(self, websocket: WebSocket, feed: LiveFeedRegistry, identity: CurrentIdentity):
        self.websocket = websocket
        self.feed = feed
        self.identity = identity
        self._active: dict[str, tuple[Subscription, asyncio.Task]] = {}

    async def handle_frame(self, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            await self.send_error(None, "Frame is not valid JSON")
            return
        if not isinstance(frame, dict):
            await self.send_error(None, "Frame must be a JSON object")
            return

        kind = frame.get("type")
        if kind == "ping":
            await self.websocket.send_json({"type": "pong"})
        elif kind == "subscribe":
            await self.subscribe(frame.get("id"), frame.get("subscription"))
        elif kind == "unsubscribe":
            self.unsubscribe(frame.get("id"))
        else:
            await self.send_error(frame.get("id"), f"Unknown frame type: {kind!r}")

    async def subscribe(self, sub_id: Any, name: Any) -> None:
        if not isinstance(sub_id, str) or not sub_id:
            await self.send_error(None, "subscribe needs a string id")
            return
        if sub_id in self._active:
            await self.send_error(sub_id, f"Subscription id {sub_id!r} already in use")
            return
        try:
            topic = topic_for_subscription(name, self.identity.id)
        except (KeyError, TypeError):
            await self.send_error(sub_id, f"Unknown subscription: {name!r}")
            return

        subscription = self.feed.subscribe(topic)
        task = asyncio.create_task(self._forward(sub_id, subscription))
        self._active[sub_id] = (subscription, task)
        logger.debug("ws.subscribed", user_id=self.identity.id, id=sub_id, topic=topic)

    def unsubscribe(self, sub_id: Any) -> None:
        entry = self._active.pop(sub_id, None) if isinstance(sub_id, str) else None
        if entry is None:
            return
        subscription, task = entry
        subscription.close()
        task.cancel()

    async def close_all(self) -> None:
        tasks = []
        for subscription, task in self._active.values():
            subscription.close()
            task.cancel()
            tasks.append(task)
        self._active.clear()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def send_error(self, sub_id: Optional[str], message: str) -> None:
        await self.websocket.send_json({"type": "error", "id": sub_id, "message": message})

    async def _forward(self, sub_id: str, subscription: Subscription) -> None:
        try:
            async for payload in subscription:
                await self.websocket.send_json(
                    {"type": "next", "id": sub_id, "payload": payload}
                )

            # Closed by the registry (slow consumer or teardown), not by the client
            entry = self._active.get(sub_id)
            if entry is not None and entry[0] is subscription:
                del self._active[sub_id]
                await self.send_error(sub_id, "Subscription closed by server")
        except (WebSocketDisconnect, RuntimeError) as e:
            # Socket went away under us; the receive loop cleans up the rest
            subscription.close()
            entry = self._active.get(sub_id)
            if entry is not None and entry[0] is subscription:
                del self._active[sub_id]
            logger.debug("ws.forward_stopped", id=sub_id, error=str(e) or type(e).__name__)


@router.websocket("/ws")
async def subscriptions_websocket(websocket: WebSocket):
    """Authenticate, accept, then serve subscription frames until disconnect."""
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=AUTH_FAILED, reason="Authentication required")
        return
    try:
        identity = identity_from_token(token)
    except TokenError:
        await websocket.close(code=AUTH_FAILED, reason="Invalid or expired token")
        return

    await websocket.accept()
    session = SubscriptionSession(websocket, websocket.app.state.feed, identity)
    logger.info("ws.connected", user_id=identity.id)

    try:
        while True:
            await session.handle_frame(await websocket.receive_text())
    except WebSocketDisconnect:
        pass
    finally:
        await session.close_all()
        logger.info("ws.disconnected", user_id=identity.id)
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
