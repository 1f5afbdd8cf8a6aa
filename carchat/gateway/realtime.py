# carchat/gateway/realtime.py
"""In-process fan-out of row-level change events.

A ``Subscription`` is scoped to one table and a set of column equality
filters. Listeners are awaited one after another in the publisher's task,
so a listener that raises only loses its own subscription: it is logged,
moved to the error state and dropped from the feed.
"""
import logging
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from carchat.schemas.chat import RowChange

logger = logging.getLogger(__name__)

Listener = Callable[[RowChange], Awaitable[None]]
ErrorHandler = Callable[[BaseException], None]


class SubscriptionState(str, Enum):
    IDLE = "idle"
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"
    CLOSED = "closed"
    ERROR = "error"


class Subscription:
    def __init__(
        self,
        table: str,
        filters: Dict[str, Any],
        listener: Listener,
        on_error: Optional[ErrorHandler] = None,
    ):
        self.id = uuid.uuid4().hex
        self.table = table
        self.filters = dict(filters)
        self.listener = listener
        self.on_error = on_error
        self.state = SubscriptionState.ACTIVE
        self.error: Optional[BaseException] = None

    @property
    def active(self) -> bool:
        return self.state == SubscriptionState.ACTIVE

    def matches(self, change: RowChange) -> bool:
        if change.table != self.table:
            return False
        record = change.record
        for column, value in self.filters.items():
            if column not in record or str(record[column]) != str(value):
                return False
        return True

    def fail(self, exc: BaseException) -> None:
        self.state = SubscriptionState.ERROR
        self.error = exc
        if self.on_error is not None:
            try:
                self.on_error(exc)
            except Exception:
                logger.exception("error handler of subscription %s raised", self.id)

    def __repr__(self) -> str:
        return f"<Subscription {self.id} {self.table} {self.filters} {self.state.value}>"


class ChangeFeed:
    def __init__(self):
        # subscription id -> subscription
        self._subscriptions: Dict[str, Subscription] = {}

    def __len__(self) -> int:
        return len(self._subscriptions)

    def subscribe(
        self,
        table: str,
        filters: Dict[str, Any],
        listener: Listener,
        on_error: Optional[ErrorHandler] = None,
    ) -> Subscription:
        sub = Subscription(table, filters, listener, on_error)
        self._subscriptions[sub.id] = sub
        logger.debug("subscribed %r", sub)
        return sub

    def unsubscribe(self, subscription: Subscription) -> bool:
        removed = self._subscriptions.pop(subscription.id, None) is not None
        if subscription.state == SubscriptionState.ACTIVE:
            subscription.state = SubscriptionState.CLOSED
        return removed

    def get(self, subscription_id: str) -> Optional[Subscription]:
        return self._subscriptions.get(subscription_id)

    async def publish(self, change: RowChange) -> int:
        delivered = 0
        dead: List[Subscription] = []
        for sub in list(self._subscriptions.values()):
            if not sub.active or not sub.matches(change):
                continue
            try:
                await sub.listener(change)
                delivered += 1
            except Exception as e:
                logger.warning(
                    "listener of %r failed on %s %s: %r",
                    sub, change.event_type, change.table, e,
                )
                sub.fail(e)
                dead.append(sub)
        for d in dead:
            self._subscriptions.pop(d.id, None)
        return delivered
