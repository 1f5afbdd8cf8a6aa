# carchat/routers/presence.py
from fastapi import APIRouter, Depends

from carchat.core.deps import get_chat_context
from carchat.schemas.chat import BlockStatusOut, PresenceIn, PresenceOut
from carchat.services.blocking import BlockList
from carchat.services.context import ChatContext
from carchat.services.presence import PresenceTracker

router = APIRouter(prefix="/api", tags=["Presence"])


# only ever the caller's own row
@router.put("/presence", response_model=PresenceOut)
async def put_presence(body: PresenceIn, ctx: ChatContext = Depends(get_chat_context)):
    return await PresenceTracker(ctx).heartbeat(ctx.user_id, body.is_online)


@router.get("/presence/{user_id}", response_model=PresenceOut)
async def get_presence(user_id: str, ctx: ChatContext = Depends(get_chat_context)):
    return await PresenceTracker(ctx).fetch(user_id)


@router.get("/blocks/{user_id}", response_model=BlockStatusOut)
async def get_block(user_id: str, ctx: ChatContext = Depends(get_chat_context)):
    return await BlockList(ctx).status(user_id)


@router.put("/blocks/{user_id}", response_model=BlockStatusOut)
async def block_user(user_id: str, ctx: ChatContext = Depends(get_chat_context)):
    return await BlockList(ctx).block(user_id)


@router.delete("/blocks/{user_id}", response_model=BlockStatusOut)
async def unblock_user(user_id: str, ctx: ChatContext = Depends(get_chat_context)):
    return await BlockList(ctx).unblock(user_id)
