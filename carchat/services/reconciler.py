# carchat/services/reconciler.py
"""Merging realtime row changes into screen-owned state."""
import logging
import uuid
from datetime import datetime
from typing import Awaitable, Callable, List, Literal, Optional

from pydantic import BaseModel

from carchat.core.errors import ChatError, GatewayError, SubscriptionFailure
from carchat.gateway.realtime import Subscription, SubscriptionState
from carchat.schemas.chat import ConversationSummary, MessageOut, RowChange
from carchat.services.context import ChatContext
from carchat.services.conversations import ConversationManager

logger = logging.getLogger(__name__)

InboundHandler = Callable[[MessageOut], Awaitable[None]]


class LocalMessage(BaseModel):
    """One row of the message list: pending until the gateway confirmed it."""

    client_id: str
    sender_id: str
    content: str
    status: Literal["pending", "confirmed"] = "pending"
    message: Optional[MessageOut] = None

    @property
    def id(self) -> Optional[str]:
        return self.message.id if self.message else None

    @property
    def created_at(self) -> Optional[datetime]:
        return self.message.created_at if self.message else None

    @classmethod
    def confirmed(cls, message: MessageOut) -> "LocalMessage":
        return cls(
            client_id=message.client_id or message.id,
            sender_id=message.sender_id,
            content=message.content,
            status="confirmed",
            message=message,
        )


class MessageList:
    """The chat screen's message list.

    Only the owning session and its reconciler mutate it. Entries are
    matched by gateway id, or by client correlation id for the sender's own
    optimistic entries.
    """

    def __init__(self):
        self.items: List[LocalMessage] = []

    def __len__(self) -> int:
        return len(self.items)

    @property
    def messages(self) -> List[MessageOut]:
        return [i.message for i in self.items if i.message is not None]

    @property
    def pending(self) -> List[LocalMessage]:
        return [i for i in self.items if i.status == "pending"]

    def _index(self, message_id: Optional[str] = None, client_id: Optional[str] = None) -> int:
        for n, item in enumerate(self.items):
            if message_id is not None and item.id == message_id:
                return n
            if client_id is not None and item.client_id == client_id:
                return n
        return -1

    def load(self, history: List[MessageOut]) -> None:
        confirmed = [LocalMessage.confirmed(m) for m in history]
        seen = {m.client_id for m in history if m.client_id}
        self.items = confirmed + [p for p in self.pending if p.client_id not in seen]

    def add_pending(self, sender_id: str, content: str) -> LocalMessage:
        item = LocalMessage(client_id=uuid.uuid4().hex, sender_id=sender_id, content=content)
        self.items.append(item)
        return item

    def discard(self, client_id: str) -> None:
        self.items = [i for i in self.items if not (i.status == "pending" and i.client_id == client_id)]

    def _put(self, n: int, message: MessageOut) -> None:
        # read/delivered never go back to false, whatever order events arrive in
        current = self.items[n].message
        if current is not None:
            message = message.model_copy(
                update={
                    "is_read": message.is_read or current.is_read,
                    "is_delivered": message.is_delivered or current.is_delivered,
                }
            )
        self.items[n] = LocalMessage.confirmed(message)

    def confirm(self, message: MessageOut) -> bool:
        """Swap a pending entry (or an earlier copy) for the confirmed row."""
        n = self._index(message.id, message.client_id)
        if n < 0:
            return False
        self._put(n, message)
        return True

    def append_confirmed(self, message: MessageOut) -> bool:
        if self.confirm(message):
            return False
        self.items.append(LocalMessage.confirmed(message))
        return True

    def replace(self, message: MessageOut) -> bool:
        return self.confirm(message)

    def remove(self, message_id: str) -> bool:
        n = self._index(message_id)
        if n < 0:
            return False
        del self.items[n]
        return True

    def clear(self) -> None:
        self.items = []


class RealtimeReconciler:
    """Keeps a ``MessageList`` in step with one conversation's message rows.

    Idle -> Subscribing -> Active -> Closed | Error. A failed subscription
    is logged and leaves the list usable from explicit fetches.
    """

    def __init__(
        self,
        ctx: ChatContext,
        conversation_id: str,
        messages: MessageList,
        on_inbound: Optional[InboundHandler] = None,
    ):
        self.ctx = ctx
        self.conversation_id = conversation_id
        self.messages = messages
        self.on_inbound = on_inbound
        self.state = SubscriptionState.IDLE
        self.error: Optional[BaseException] = None
        self._subscription: Optional[Subscription] = None

    @property
    def live(self) -> bool:
        return self.state == SubscriptionState.ACTIVE

    async def start(self) -> bool:
        if self.state in (SubscriptionState.SUBSCRIBING, SubscriptionState.ACTIVE):
            return True
        self.state = SubscriptionState.SUBSCRIBING
        try:
            self._subscription = await self.ctx.gateway.subscribe_row_changes(
                "messages",
                {"conversation_id": self.conversation_id},
                self._on_event,
                on_error=self._on_error,
            )
        except (GatewayError, SubscriptionFailure) as e:
            self._on_error(e)
            return False
        self.state = SubscriptionState.ACTIVE
        logger.info("messages of %s are live", self.conversation_id)
        return True

    async def close(self) -> None:
        sub, self._subscription = self._subscription, None
        if self.state != SubscriptionState.ERROR:
            self.state = SubscriptionState.CLOSED
        if sub is not None:
            try:
                await self.ctx.gateway.unsubscribe(sub)
            except GatewayError as e:
                logger.warning("unsubscribe of %s failed: %s", self.conversation_id, e)

    async def __aenter__(self) -> "RealtimeReconciler":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def _on_error(self, exc: BaseException) -> None:
        self.state = SubscriptionState.ERROR
        self.error = exc
        logger.warning("live updates for %s lost: %r", self.conversation_id, exc)

    async def _on_event(self, change: RowChange) -> None:
        if not self.live:
            return
        if change.event_type == "DELETE":
            message_id = change.old.get("id")
            if message_id is not None:
                self.messages.remove(message_id)
            return

        message = MessageOut.model_validate(change.new)
        if change.event_type == "UPDATE":
            # stale or never-seen rows are ignored
            self.messages.replace(message)
            return

        if message.sender_id == self.ctx.user_id:
            # echo of our own send, or a send from another device
            self.messages.append_confirmed(message)
            return

        appended = self.messages.append_confirmed(message)
        if appended and self.on_inbound is not None:
            await self.on_inbound(message)


ListHandler = Callable[[List[ConversationSummary]], Awaitable[None]]


class ConversationListWatcher:
    """Inbox state: re-fetches the conversation list on every relevant change."""

    def __init__(self, ctx: ChatContext, on_change: Optional[ListHandler] = None):
        self.ctx = ctx
        self.manager = ConversationManager(ctx)
        self.on_change = on_change
        self.conversations: List[ConversationSummary] = []
        self.state = SubscriptionState.IDLE
        self._subscriptions: List[Subscription] = []

    async def start(self) -> bool:
        self.state = SubscriptionState.SUBSCRIBING
        me = self.ctx.user_id
        scopes = [
            ("conversations", {"buyer_id": me}),
            ("conversations", {"seller_id": me}),
            ("messages", {"receiver_id": me}),
        ]
        try:
            for table, filters in scopes:
                sub = await self.ctx.gateway.subscribe_row_changes(
                    table, filters, self._on_event, on_error=self._on_error
                )
                self._subscriptions.append(sub)
        except (GatewayError, SubscriptionFailure) as e:
            self.state = SubscriptionState.ERROR
            logger.warning("inbox of %s is not live: %r", self.ctx.user_id, e)
            await self._release()
            await self.refresh()
            return False
        self.state = SubscriptionState.ACTIVE
        await self.refresh()
        return True

    async def refresh(self) -> List[ConversationSummary]:
        self.conversations = await self.manager.list_for_user(self.ctx.user_id)
        if self.on_change is not None:
            await self.on_change(self.conversations)
        return self.conversations

    async def _release(self) -> None:
        subs, self._subscriptions = self._subscriptions, []
        for sub in subs:
            try:
                await self.ctx.gateway.unsubscribe(sub)
            except GatewayError as e:
                logger.warning("unsubscribe failed: %s", e)

    async def close(self) -> None:
        await self._release()
        if self.state != SubscriptionState.ERROR:
            self.state = SubscriptionState.CLOSED

    async def __aenter__(self) -> "ConversationListWatcher":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def _on_error(self, exc: BaseException) -> None:
        # the feed already dropped the failed subscription; the others keep the list live
        self._subscriptions = [s for s in self._subscriptions if s.active]
        if self._subscriptions:
            logger.warning("inbox of %s lost one update stream: %r", self.ctx.user_id, exc)
            return
        self.state = SubscriptionState.ERROR
        logger.warning("inbox of %s is no longer live: %r", self.ctx.user_id, exc)

    async def _on_event(self, change: RowChange) -> None:
        if self.state != SubscriptionState.ACTIVE:
            return
        try:
            await self.refresh()
        except ChatError as e:
            # keep the stale list, the next event or focus refresh catches up
            logger.warning("inbox refresh failed: %s", e)
