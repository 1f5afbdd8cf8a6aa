# carchat/services/messages.py
import logging
from typing import List, Optional

from carchat.core.errors import (
    CreationFailure,
    GatewayError,
    LookupFailure,
    NotFoundFailure,
    ValidationFailure,
)
from carchat.schemas.chat import MessageOut
from carchat.services.context import ChatContext

logger = logging.getLogger(__name__)


class MessageStore:
    def __init__(self, ctx: ChatContext):
        self.ctx = ctx
        self.gateway = ctx.gateway

    async def send(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        client_id: Optional[str] = None,
    ) -> MessageOut:
        """Append a message; the receiver is always the other participant.

        Takes no receiver argument. Failures are raised once
        and never retried here, the caller decides whether to resend.
        """
        text = (content or "").strip()
        if not text:
            raise ValidationFailure("empty_content")

        try:
            conversation = await self.gateway.get_conversation(conversation_id)
        except GatewayError as e:
            raise LookupFailure(message=str(e)) from e
        if conversation is None:
            raise NotFoundFailure()
        if not conversation.has_participant(sender_id):
            raise ValidationFailure("not_a_participant")

        receiver_id = conversation.other_participant(sender_id)
        try:
            message = await self.gateway.insert_message(
                conversation_id, sender_id, receiver_id, text, client_id=client_id
            )
        except GatewayError as e:
            logger.error("send to conversation %s failed: %s", conversation_id, e)
            raise CreationFailure("send_failed", str(e)) from e
        logger.debug("message %s sent in %s", message.id, conversation_id)
        return message

    async def fetch_history(self, conversation_id: str) -> List[MessageOut]:
        """All messages of the conversation, oldest first."""
        try:
            rows = await self.gateway.list_messages(conversation_id)
        except GatewayError as e:
            raise LookupFailure(message=str(e)) from e
        return sorted(rows, key=lambda m: m.created_at)
