# carchat/routers/realtime_ws.py
import logging
from typing import Dict

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError

from carchat.core.deps import get_gateway
from carchat.core.errors import ChatError
from carchat.gateway.base import DataGateway
from carchat.gateway.realtime import Subscription
from carchat.schemas.base import BaseSchema
from carchat.schemas.chat import (
    ErrorOut,
    RowChange,
    RowChangeOut,
    SubscribedOut,
    SubscribeIn,
    SystemMessageOut,
    UnsubscribeIn,
)
from carchat.services.context import ChatContext
from carchat.services.conversations import ConversationManager
from carchat.utils.auth_ws import decode_user_id

logger = logging.getLogger(__name__)

router = APIRouter()

# columns a caller may scope a subscription by, per table, when the value is their own id
OWN_SCOPES = {
    "messages": ("sender_id", "receiver_id"),
    "conversations": ("buyer_id", "seller_id"),
    "blocked_users": ("blocker_id", "blocked_id"),
}


class RealtimeConnection:
    """One client socket and the feed subscriptions it opened."""

    def __init__(self, websocket: WebSocket, user_id: str, gateway: DataGateway):
        self.websocket = websocket
        self.user_id = user_id
        self.gateway = gateway
        self.subscriptions: Dict[str, Subscription] = {}

    async def send(self, event: BaseSchema) -> None:
        await self.websocket.send_json(jsonable_encoder(event.model_dump(by_alias=True)))

    async def send_error(self, code: int, message: str) -> None:
        await self.send(ErrorOut(code=code, message=message))

    async def allowed(self, req: SubscribeIn) -> bool:
        if req.table == "user_presence":
            return set(req.filter) == {"user_id"}
        if any(req.filter.get(col) == self.user_id for col in OWN_SCOPES[req.table]):
            return True
        if req.table == "messages" and "conversation_id" in req.filter:
            ctx = ChatContext(self.gateway, self.user_id)
            try:
                await ConversationManager(ctx).require_participant(req.filter["conversation_id"], self.user_id)
            except ChatError:
                return False
            return True
        return False

    async def subscribe(self, req: SubscribeIn) -> Subscription:
        holder: Dict[str, str] = {}

        async def forward(change: RowChange) -> None:
            # a dead socket raises here and the feed drops the subscription
            await self.send(RowChangeOut(subscription_id=holder["id"], change=change))

        sub = await self.gateway.subscribe_row_changes(req.table, req.filter, forward)
        holder["id"] = sub.id
        self.subscriptions[sub.id] = sub
        return sub

    async def unsubscribe(self, subscription_id: str) -> bool:
        sub = self.subscriptions.pop(subscription_id, None)
        if sub is None:
            return False
        await self.gateway.unsubscribe(sub)
        return True

    async def release(self) -> None:
        for sub_id in list(self.subscriptions):
            await self.unsubscribe(sub_id)


@router.websocket("/ws/realtime")
async def websocket_realtime(websocket: WebSocket, gateway: DataGateway = Depends(get_gateway)):
    # 1) token from the query string
    token = websocket.query_params.get("token")
    user_id = decode_user_id(token)
    if not user_id:
        await websocket.close(code=4001)  # invalid/expired token
        return

    # 2) accept and register
    await websocket.accept()
    conn = RealtimeConnection(websocket, user_id, gateway)
    await conn.send(SystemMessageOut(type="welcome", message="connected"))

    try:
        while True:
            data = await websocket.receive_json()
            ev = data.get("event")

            if ev == "subscribe":
                try:
                    req = SubscribeIn(**data)
                except ValidationError:
                    await conn.send_error(4000, "invalid_payload")
                    continue
                if not await conn.allowed(req):
                    await conn.send_error(4003, "forbidden")
                    continue
                sub = await conn.subscribe(req)
                await conn.send(SubscribedOut(subscription_id=sub.id, table=sub.table))

            elif ev == "unsubscribe":
                try:
                    req = UnsubscribeIn(**data)
                except ValidationError:
                    await conn.send_error(4000, "invalid_payload")
                    continue
                if await conn.unsubscribe(req.subscription_id):
                    await conn.send(SystemMessageOut(type="unsubscribed", message=req.subscription_id))
                else:
                    await conn.send_error(4004, "subscription_not_found")

            elif ev == "leave":
                await websocket.close(code=1000)  # normal close
                break

            else:
                await conn.send_error(4000, f"unknown_event: {ev}")

    except WebSocketDisconnect:
        pass
    finally:
        await conn.release()
        logger.debug("realtime socket of %s closed", user_id)
