# carchat/services/blocking.py
import logging

from carchat.core.errors import GatewayError, LookupFailure, UpdateFailure, ValidationFailure
from carchat.schemas.chat import BlockStatusOut
from carchat.services.context import ChatContext

logger = logging.getLogger(__name__)


class BlockList:
    """Blocks between the signed-in user and one other user.

    A block in either direction stops the pair from messaging; unblocking
    clears both directions.
    """

    def __init__(self, ctx: ChatContext):
        self.ctx = ctx
        self.gateway = ctx.gateway

    def _check(self, other_id: str) -> None:
        if not other_id or other_id == self.ctx.user_id:
            raise ValidationFailure("cannot_block_self")

    async def status(self, other_id: str) -> BlockStatusOut:
        self._check(other_id)
        try:
            row = await self.gateway.find_block(self.ctx.user_id, other_id)
        except GatewayError as e:
            raise LookupFailure(message=str(e)) from e
        if row is None:
            return BlockStatusOut(blocked=False)
        return BlockStatusOut(blocked=True, blocked_by=row.blocker_id)

    async def block(self, other_id: str) -> BlockStatusOut:
        self._check(other_id)
        try:
            await self.gateway.upsert_block(self.ctx.user_id, other_id)
        except GatewayError as e:
            raise UpdateFailure("block_failed", str(e)) from e
        logger.info("%s blocked %s", self.ctx.user_id, other_id)
        return await self.status(other_id)

    async def unblock(self, other_id: str) -> BlockStatusOut:
        self._check(other_id)
        try:
            await self.gateway.delete_blocks(self.ctx.user_id, other_id)
        except GatewayError as e:
            raise UpdateFailure("unblock_failed", str(e)) from e
        logger.info("%s unblocked %s", self.ctx.user_id, other_id)
        return await self.status(other_id)
