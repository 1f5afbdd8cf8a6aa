# carchat/services/presence.py
import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from carchat.core.errors import GatewayError, LookupFailure, UpdateFailure, ValidationFailure
from carchat.gateway.realtime import Subscription, SubscriptionState
from carchat.models.ids import utcnow
from carchat.schemas.chat import PresenceOut, RowChange
from carchat.services.context import ChatContext

logger = logging.getLogger(__name__)

PresenceHandler = Callable[[bool], Awaitable[None]]


class PresenceObserver:
    """Last known online state of another user; last update wins."""

    def __init__(self, ctx: ChatContext, user_id: str, on_change: Optional[PresenceHandler] = None):
        self.ctx = ctx
        self.user_id = user_id
        self.on_change = on_change
        self.is_online = False
        self.last_seen: Optional[datetime] = None
        self.state = SubscriptionState.IDLE
        self._subscription: Optional[Subscription] = None

    async def start(self) -> None:
        try:
            row = await self.ctx.gateway.fetch_presence(self.user_id)
        except GatewayError as e:
            raise LookupFailure(message=str(e)) from e
        if row is not None:
            self.is_online = row.is_online
            self.last_seen = row.last_seen

        self.state = SubscriptionState.SUBSCRIBING
        try:
            self._subscription = await self.ctx.gateway.subscribe_row_changes(
                "user_presence", {"user_id": self.user_id}, self._on_event, on_error=self._on_error
            )
        except GatewayError as e:
            self._on_error(e)
            return
        self.state = SubscriptionState.ACTIVE

    async def close(self) -> None:
        sub, self._subscription = self._subscription, None
        if self.state != SubscriptionState.ERROR:
            self.state = SubscriptionState.CLOSED
        if sub is not None:
            await self.ctx.gateway.unsubscribe(sub)

    def _on_error(self, exc: BaseException) -> None:
        self.state = SubscriptionState.ERROR
        logger.warning("presence of %s is no longer live: %r", self.user_id, exc)

    async def _on_event(self, change: RowChange) -> None:
        if self.state != SubscriptionState.ACTIVE or not change.new:
            return
        row = PresenceOut.model_validate(change.new)
        self.is_online = row.is_online
        self.last_seen = row.last_seen
        if self.on_change is not None:
            await self.on_change(row.is_online)


class PresenceTracker:
    """Heartbeat of the signed-in user's own presence row.

    Runs as a background task with an explicit stop signal. Only the owner
    of the context ever writes its row.
    """

    def __init__(self, ctx: ChatContext):
        self.ctx = ctx
        self._task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def heartbeat(self, user_id: str, is_online: bool) -> PresenceOut:
        if user_id != self.ctx.user_id:
            raise ValidationFailure("presence_not_own")
        try:
            return await self.ctx.gateway.upsert_presence(user_id, is_online, utcnow())
        except GatewayError as e:
            raise UpdateFailure("presence_failed", str(e)) from e

    async def fetch(self, user_id: str) -> PresenceOut:
        """Presence row of any user; users never seen count as offline."""
        try:
            row = await self.ctx.gateway.fetch_presence(user_id)
        except GatewayError as e:
            raise LookupFailure(message=str(e)) from e
        return row or PresenceOut(user_id=user_id, is_online=False)

    async def _beat(self, is_online: bool) -> None:
        try:
            await self.heartbeat(self.ctx.user_id, is_online)
        except UpdateFailure as e:
            logger.warning("presence heartbeat failed: %s", e)

    async def _run(self) -> None:
        interval = self.ctx.settings.PRESENCE_HEARTBEAT_SECONDS
        while not self._stop.is_set():
            await self._beat(True)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self, go_offline: bool = True) -> None:
        task, self._task = self._task, None
        self._stop.set()
        if task is not None:
            await task
        if go_offline:
            await self._beat(False)

    async def on_app_state(self, state: str) -> None:
        # background goes offline at once instead of waiting for a tick
        if state == "active":
            self.start()
        elif state == "background":
            await self.stop(go_offline=True)

    async def observe(self, other_user_id: str, on_change: Optional[PresenceHandler] = None) -> PresenceObserver:
        observer = PresenceObserver(self.ctx, other_user_id, on_change)
        await observer.start()
        return observer
