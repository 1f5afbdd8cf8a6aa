# carchat/services/conversations.py
import logging
from typing import List, Optional

from carchat.core.errors import (
    ConflictError,
    CreationFailure,
    GatewayError,
    LookupFailure,
    NotFoundFailure,
    UpdateFailure,
    ValidationFailure,
)
from carchat.schemas.chat import ConversationOut, ConversationSummary
from carchat.services.context import ChatContext
from carchat.services.formatting import format_list_time, preview_text

logger = logging.getLogger(__name__)


class ConversationManager:
    """Creation and lookup of conversations keyed by (car, buyer, seller).

    The triple is asymmetric: (car, A, B) and (car, B, A) are different
    conversations. Lookup always precedes creation, and a failed lookup is
    reported as ``LookupFailure`` instead of falling through to an insert.
    """

    def __init__(self, ctx: ChatContext):
        self.ctx = ctx
        self.gateway = ctx.gateway

    async def _find(self, car_id, buyer_id, seller_id) -> Optional[ConversationOut]:
        try:
            return await self.gateway.find_conversation(car_id, buyer_id, seller_id)
        except GatewayError as e:
            logger.error("conversation lookup failed for car=%s buyer=%s seller=%s", car_id, buyer_id, seller_id)
            raise LookupFailure(message=str(e)) from e

    async def get_or_create(self, car_id: Optional[str], buyer_id: str, seller_id: str) -> ConversationOut:
        if not buyer_id or not seller_id:
            raise ValidationFailure("missing_participant")
        if buyer_id == seller_id:
            raise ValidationFailure("cannot_chat_with_self")

        existing = await self._find(car_id, buyer_id, seller_id)
        if existing is not None:
            return existing

        try:
            created = await self.gateway.create_conversation(car_id, buyer_id, seller_id)
        except ConflictError as e:
            # someone created the same triple between our lookup and insert
            logger.info("conversation for car=%s buyer=%s seller=%s created concurrently", car_id, buyer_id, seller_id)
            existing = await self._find(car_id, buyer_id, seller_id)
            if existing is not None:
                return existing
            raise CreationFailure(message=str(e)) from e
        except GatewayError as e:
            logger.error("conversation insert failed for car=%s buyer=%s seller=%s", car_id, buyer_id, seller_id)
            raise CreationFailure(message=str(e)) from e

        logger.info("created conversation %s (car=%s buyer=%s seller=%s)", created.id, car_id, buyer_id, seller_id)
        return created

    async def get(self, conversation_id: str) -> ConversationOut:
        try:
            conversation = await self.gateway.get_conversation(conversation_id)
        except GatewayError as e:
            raise LookupFailure(message=str(e)) from e
        if conversation is None:
            raise NotFoundFailure()
        return conversation

    async def require_participant(self, conversation_id: str, user_id: str) -> ConversationOut:
        conversation = await self.get(conversation_id)
        if not conversation.has_participant(user_id):
            raise ValidationFailure("not_a_participant")
        return conversation

    async def list_for_user(self, user_id: str) -> List[ConversationSummary]:
        """Conversations of ``user_id``, most recently active first."""
        try:
            conversations = await self.gateway.list_conversations(user_id)
        except GatewayError as e:
            raise LookupFailure(message=str(e)) from e

        items: List[ConversationSummary] = []
        for c in conversations:
            if c.buyer_id == user_id:
                role, counterpart = "buyer", c.seller
            else:
                role, counterpart = "seller", c.buyer
            items.append(
                ConversationSummary(
                    conversation=c,
                    role=role,
                    counterpart=counterpart,
                    car=c.car,
                    preview=preview_text(c.last_message),
                    time_label=format_list_time(c.last_message_at, offset_hours=self.ctx.settings.DISPLAY_UTC_OFFSET_HOURS),
                    unread_count=await self.unread_count(c.id, user_id),
                )
            )
        return items

    async def unread_count(self, conversation_id: str, user_id: str) -> int:
        try:
            return await self.gateway.count_unread(conversation_id, user_id)
        except GatewayError as e:
            raise LookupFailure(message=str(e)) from e

    async def total_unread(self, user_id: str) -> int:
        try:
            conversations = await self.gateway.list_conversations(user_id)
        except GatewayError as e:
            raise LookupFailure(message=str(e)) from e
        total = 0
        for c in conversations:
            total += await self.unread_count(c.id, user_id)
        return total

    async def clear_messages(self, conversation_id: str, user_id: str) -> int:
        await self.require_participant(conversation_id, user_id)
        try:
            deleted = await self.gateway.delete_messages(conversation_id)
        except GatewayError as e:
            raise UpdateFailure("clear_failed", str(e)) from e
        logger.info("cleared %d messages of conversation %s", deleted, conversation_id)
        return deleted

    async def delete(self, conversation_id: str, user_id: str) -> int:
        await self.require_participant(conversation_id, user_id)
        try:
            deleted = await self.gateway.delete_conversation(conversation_id)
        except GatewayError as e:
            raise UpdateFailure("delete_failed", str(e)) from e
        logger.info("deleted conversation %s", conversation_id)
        return deleted
