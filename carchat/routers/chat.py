# carchat/routers/chat.py
from fastapi import APIRouter, Depends, Path, status

from carchat.core.deps import get_chat_context
from carchat.core.errors import ValidationFailure
from carchat.schemas.chat import (
    ChatListOut,
    ConversationOut,
    CreateChatIn,
    DeletedOut,
    MessageOut,
    MessagesOut,
    ReadOut,
    SendMessageIn,
    UnreadOut,
)
from carchat.services.blocking import BlockList
from carchat.services.context import ChatContext
from carchat.services.conversations import ConversationManager
from carchat.services.messages import MessageStore
from carchat.services.read_state import ReadStateTracker

# ✅ /api/chat prefix
router = APIRouter(prefix="/api/chat", tags=["Chat"])


# ✅ POST /api/chat : the caller is always the buyer
@router.post("", response_model=ConversationOut)
async def create_chat(req: CreateChatIn, ctx: ChatContext = Depends(get_chat_context)):
    return await ConversationManager(ctx).get_or_create(req.car_id, ctx.user_id, req.seller_id)


# ✅ GET /api/chat/me
@router.get("/me", response_model=ChatListOut)
async def get_my_chats(ctx: ChatContext = Depends(get_chat_context)):
    chats = await ConversationManager(ctx).list_for_user(ctx.user_id)
    return ChatListOut(chats=chats)


@router.get("/unread", response_model=UnreadOut)
async def get_unread_total(ctx: ChatContext = Depends(get_chat_context)):
    return UnreadOut(total=await ConversationManager(ctx).total_unread(ctx.user_id))


@router.get("/{chat_id}/messages", response_model=MessagesOut)
async def list_messages(chat_id: str = Path(...), ctx: ChatContext = Depends(get_chat_context)):
    await ConversationManager(ctx).require_participant(chat_id, ctx.user_id)
    messages = await MessageStore(ctx).fetch_history(chat_id)
    return MessagesOut(messages=messages)


@router.post("/{chat_id}/messages", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def send_message(
    body: SendMessageIn,
    chat_id: str = Path(...),
    ctx: ChatContext = Depends(get_chat_context),
):
    if not body.content.strip():
        raise ValidationFailure("empty_content")
    conversation = await ConversationManager(ctx).require_participant(chat_id, ctx.user_id)
    block = await BlockList(ctx).status(conversation.other_participant(ctx.user_id))
    if block.blocked:
        raise ValidationFailure("blocked")
    return await MessageStore(ctx).send(chat_id, ctx.user_id, body.content, client_id=body.client_id)


@router.post("/{chat_id}/read", response_model=ReadOut)
async def mark_read(chat_id: str = Path(...), ctx: ChatContext = Depends(get_chat_context)):
    await ConversationManager(ctx).require_participant(chat_id, ctx.user_id)
    updated = await ReadStateTracker(ctx).mark_read(chat_id, ctx.user_id)
    return ReadOut(updated=updated)


@router.delete("/{chat_id}/messages", response_model=DeletedOut)
async def clear_messages(chat_id: str = Path(...), ctx: ChatContext = Depends(get_chat_context)):
    deleted = await ConversationManager(ctx).clear_messages(chat_id, ctx.user_id)
    return DeletedOut(deleted=deleted)


@router.delete("/{chat_id}", response_model=DeletedOut)
async def delete_chat(chat_id: str = Path(...), ctx: ChatContext = Depends(get_chat_context)):
    deleted = await ConversationManager(ctx).delete(chat_id, ctx.user_id)
    return DeletedOut(deleted=deleted)
