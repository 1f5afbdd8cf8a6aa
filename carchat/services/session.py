# carchat/services/session.py
import asyncio
import logging
from contextlib import AsyncExitStack
from typing import List, Optional

from carchat.core.errors import ChatError, GatewayError, ValidationFailure
from carchat.gateway.realtime import Subscription
from carchat.schemas.chat import BlockStatusOut, ConversationOut, MessageOut, ProfileSummary, RowChange
from carchat.services.blocking import BlockList
from carchat.services.context import ChatContext
from carchat.services.conversations import ConversationManager
from carchat.services.formatting import format_message_time, message_status
from carchat.services.messages import MessageStore
from carchat.services.presence import PresenceObserver, PresenceTracker
from carchat.services.read_state import ReadStateTracker
from carchat.services.reconciler import MessageList, RealtimeReconciler

logger = logging.getLogger(__name__)


class ChatSession:
    """State and actions of one open chat room.

    ``open`` acquires the message subscription, the block subscriptions,
    the counterpart presence observer and the heartbeat; ``close`` releases
    all of them, whichever step failed. Responses that arrive after close
    are dropped.
    """

    def __init__(self, ctx: ChatContext, conversation_id: str):
        self.ctx = ctx
        self.conversation_id = conversation_id

        self.messages = MessageList()
        self.manager = ConversationManager(ctx)
        self.store = MessageStore(ctx)
        self.read_state = ReadStateTracker(ctx)
        self.presence = PresenceTracker(ctx)
        self.blocks = BlockList(ctx)
        self.reconciler = RealtimeReconciler(ctx, conversation_id, self.messages, on_inbound=self._on_inbound)

        self.conversation: Optional[ConversationOut] = None
        self.counterpart_id: Optional[str] = None
        self.counterpart: Optional[ProfileSummary] = None
        self.counterpart_presence: Optional[PresenceObserver] = None
        self.block_status = BlockStatusOut(blocked=False)

        self.draft = ""
        self.focused = False
        self.sending = False
        self.closed = False

        self._exit = AsyncExitStack()
        self._read_task: Optional[asyncio.Task] = None

    # ---------- lifecycle ----------
    async def open(self) -> "ChatSession":
        try:
            await self._open()
        except BaseException:
            await self.close()
            raise
        return self

    async def _hold(self, release, *args) -> bool:
        """Register ``release`` for close, or run it now if close already ran."""
        if self.closed:
            await release(*args)
            return False
        self._exit.push_async_callback(release, *args)
        return True

    async def _open(self) -> None:
        me = self.ctx.user_id
        self.conversation = await self.manager.require_participant(self.conversation_id, me)
        self.counterpart_id = self.conversation.other_participant(me)
        self.counterpart = (
            self.conversation.seller if self.conversation.buyer_id == me else self.conversation.buyer
        )
        if self.closed:
            return

        # subscribe before fetching so nothing lands between the two
        await self.reconciler.start()
        if not await self._hold(self.reconciler.close):
            return

        try:
            await self.read_state.mark_read(self.conversation_id, me)
        except ChatError as e:
            logger.warning("mark read on open failed: %s", e)
        history = await self.store.fetch_history(self.conversation_id)
        if self.closed:
            return
        self.messages.load(history)

        try:
            self.block_status = await self.blocks.status(self.counterpart_id)
        except ChatError as e:
            # the live block subscription corrects this once it fires
            logger.warning("block status unavailable: %s", e)
        for column in ("blocker_id", "blocked_id"):
            sub = await self._subscribe_blocks(column)
            if sub is not None and not await self._hold(self.ctx.gateway.unsubscribe, sub):
                return
        if self.closed:
            return

        observer = await self.presence.observe(self.counterpart_id)
        if not await self._hold(observer.close):
            return
        self.counterpart_presence = observer

        self.presence.start()
        self._exit.push_async_callback(self.presence.stop)

        self.focused = True
        logger.info("chat %s opened by %s", self.conversation_id, me)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.focused = False
        task, self._read_task = self._read_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._exit.aclose()
        logger.info("chat %s closed", self.conversation_id)

    async def __aenter__(self) -> "ChatSession":
        return await self.open()

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ---------- screen events ----------
    def on_focus(self) -> None:
        if self.closed:
            return
        self.focused = True
        self._schedule_mark_read(self.ctx.settings.READ_DELAY_ON_FOCUS)

    def on_blur(self) -> None:
        self.focused = False

    async def on_app_state(self, state: str) -> None:
        # the heartbeat belongs to the open screen; a closed one never restarts it
        if self.closed:
            return
        await self.presence.on_app_state(state)
        if state == "active" and self.focused:
            self._schedule_mark_read(self.ctx.settings.READ_DELAY_ON_FOREGROUND)

    # ---------- actions ----------
    async def send(self, text: Optional[str] = None) -> MessageOut:
        """Send ``text`` (or the current draft) with an optimistic entry.

        On failure the pending entry is dropped and the text goes back into
        the draft before the error is re-raised.
        """
        content = self.draft if text is None else text
        if not content.strip():
            raise ValidationFailure("empty_content")
        if self.closed:
            raise ValidationFailure("session_closed")
        if self.block_status.blocked:
            raise ValidationFailure("blocked")
        if self.sending:
            raise ValidationFailure("send_in_flight")

        pending = self.messages.add_pending(self.ctx.user_id, content.strip())
        self.draft = ""
        self.sending = True
        try:
            message = await self.store.send(
                self.conversation_id, self.ctx.user_id, content, client_id=pending.client_id
            )
        except ChatError:
            self.messages.discard(pending.client_id)
            self.draft = content
            raise
        finally:
            self.sending = False

        if not self.closed:
            self.messages.confirm(message)
        return message

    async def clear(self) -> int:
        deleted = await self.manager.clear_messages(self.conversation_id, self.ctx.user_id)
        if not self.closed:
            self.messages.clear()
        return deleted

    async def refresh_block_status(self) -> BlockStatusOut:
        status = await self.blocks.status(self.counterpart_id)
        if not self.closed:
            self.block_status = status
        return status

    def status_of(self, message: MessageOut) -> Optional[str]:
        return message_status(message, self.ctx.user_id)

    def time_of(self, message: MessageOut) -> str:
        return format_message_time(message.created_at, self.ctx.settings.DISPLAY_UTC_OFFSET_HOURS)

    @property
    def history(self) -> List[MessageOut]:
        return self.messages.messages

    @property
    def counterpart_online(self) -> bool:
        return bool(self.counterpart_presence and self.counterpart_presence.is_online)

    async def drain(self) -> None:
        """Wait for a scheduled mark-read to finish."""
        task = self._read_task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    # ---------- internals ----------
    async def _subscribe_blocks(self, column: str) -> Optional[Subscription]:
        try:
            return await self.ctx.gateway.subscribe_row_changes(
                "blocked_users", {column: self.ctx.user_id}, self._on_block_change
            )
        except GatewayError as e:
            logger.warning("block updates unavailable: %s", e)
            return None

    async def _on_block_change(self, change: RowChange) -> None:
        record = change.record
        if self.counterpart_id not in (record.get("blocker_id"), record.get("blocked_id")):
            return
        try:
            await self.refresh_block_status()
        except ChatError as e:
            logger.warning("block status refresh failed: %s", e)

    async def _on_inbound(self, message: MessageOut) -> None:
        try:
            await self.read_state.mark_delivered(self.conversation_id, self.ctx.user_id)
        except ChatError as e:
            logger.warning("delivery ack failed: %s", e)
        if self.focused:
            self._schedule_mark_read(self.ctx.settings.READ_DELAY_ON_INBOUND)

    def _schedule_mark_read(self, delay: float) -> None:
        if self.closed:
            return
        if self._read_task is not None and not self._read_task.done():
            self._read_task.cancel()
        self._read_task = asyncio.create_task(self._mark_read_after(delay))

    async def _mark_read_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self.closed:
            return
        try:
            await self.read_state.mark_read(self.conversation_id, self.ctx.user_id)
        except ChatError as e:
            logger.warning("mark read failed: %s", e)
