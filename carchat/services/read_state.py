# carchat/services/read_state.py
import logging

from carchat.core.errors import GatewayError, UpdateFailure
from carchat.services.context import ChatContext

logger = logging.getLogger(__name__)


class ReadStateTracker:
    """Flips read/delivered flags of inbound messages in one batch.

    Flags only ever go from false to true, so both calls are idempotent and
    return 0 once there is nothing left to mark.
    """

    def __init__(self, ctx: ChatContext):
        self.ctx = ctx
        self.gateway = ctx.gateway

    async def mark_read(self, conversation_id: str, viewer_id: str) -> int:
        try:
            count = await self.gateway.update_messages_read_flag(conversation_id, viewer_id)
        except GatewayError as e:
            logger.error("mark read failed for %s: %s", conversation_id, e)
            raise UpdateFailure("mark_read_failed", str(e)) from e
        if count:
            logger.debug("marked %d messages read in %s", count, conversation_id)
        return count

    async def mark_delivered(self, conversation_id: str, receiver_id: str) -> int:
        try:
            return await self.gateway.update_messages_delivered_flag(conversation_id, receiver_id)
        except GatewayError as e:
            logger.error("mark delivered failed for %s: %s", conversation_id, e)
            raise UpdateFailure("mark_delivered_failed", str(e)) from e
