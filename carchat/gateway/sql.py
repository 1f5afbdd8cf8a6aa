# carchat/gateway/sql.py
import asyncio
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import and_, desc, func, inspect, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from carchat.core.errors import ConflictError, GatewayError
from carchat.gateway.base import DataGateway
from carchat.gateway.realtime import ChangeFeed, ErrorHandler, Listener, Subscription
from carchat.models.chat import BlockedUser, Conversation, Message, Presence
from carchat.models.ids import utcnow
from carchat.models.user import Profile
from carchat.schemas.chat import (
    BlockOut,
    ConversationOut,
    MessageOut,
    PresenceOut,
    ProfileSummary,
    RowChange,
)

logger = logging.getLogger(__name__)

# what a unit of work hands back: its result and the row changes to publish
Work = Callable[[Session], Tuple[Any, List[RowChange]]]


def _row(obj) -> Dict[str, Any]:
    """Column values of an ORM row, as a realtime payload would carry them."""
    return {attr.key: getattr(obj, attr.key) for attr in inspect(obj).mapper.column_attrs}


def _change(table: str, event_type: str, new=None, old=None) -> RowChange:
    return RowChange(table=table, event_type=event_type, new=new or {}, old=old or {})


class SqlGateway(DataGateway):
    """SQLAlchemy-backed gateway.

    Each call runs in its own session on a worker thread, so the event loop
    keeps serving while the database answers. Calls are serialized per
    gateway. Row changes are published to the ``ChangeFeed`` only after the
    transaction committed, so listeners never observe a write that was
    rolled back. A caller cancelled mid-call does not cancel the write or
    its events.
    """

    def __init__(self, session_factory: sessionmaker, feed: ChangeFeed):
        self._session_factory = session_factory
        self.feed = feed
        self._lock: Optional[asyncio.Lock] = None

    @contextmanager
    def _session(self, op: str) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except IntegrityError as e:
            db.rollback()
            logger.info("%s rejected by constraint: %s", op, e.orig)
            raise ConflictError(message=f"{op}: {e.orig}") from e
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("%s failed: %r", op, e)
            raise GatewayError(message=f"{op}: {e}") from e
        finally:
            db.close()

    def _work(self, op: str, work: Work) -> Tuple[Any, List[RowChange]]:
        with self._session(op) as db:
            return work(db)

    async def _run(self, op: str, work: Work) -> Any:
        if self._lock is None:
            self._lock = asyncio.Lock()

        async def call():
            async with self._lock:
                result, changes = await run_in_threadpool(self._work, op, work)
            for change in changes:
                await self.feed.publish(change)
            return result

        return await asyncio.shield(call())

    async def _read(self, op: str, query: Callable[[Session], Any]) -> Any:
        return await self._run(op, lambda db: (query(db), []))

    # ---------- conversations ----------
    async def find_conversation(self, car_id, buyer_id, seller_id):
        def query(db):
            q = db.query(Conversation).filter(
                Conversation.buyer_id == buyer_id,
                Conversation.seller_id == seller_id,
            )
            if car_id is None:
                q = q.filter(Conversation.car_id.is_(None))
            else:
                q = q.filter(Conversation.car_id == car_id)
            row = q.first()
            return ConversationOut.model_validate(row) if row else None

        return await self._read("find_conversation", query)

    async def create_conversation(self, car_id, buyer_id, seller_id):
        def work(db):
            now = utcnow()
            row = Conversation(
                car_id=car_id,
                buyer_id=buyer_id,
                seller_id=seller_id,
                last_message=None,
                last_message_at=now,
                created_at=now,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return ConversationOut.model_validate(row), [_change("conversations", "INSERT", new=_row(row))]

        return await self._run("create_conversation", work)

    async def get_conversation(self, conversation_id):
        def query(db):
            row = db.get(Conversation, conversation_id)
            return ConversationOut.model_validate(row) if row else None

        return await self._read("get_conversation", query)

    async def list_conversations(self, user_id):
        def query(db):
            rows = (
                db.query(Conversation)
                .filter(or_(Conversation.buyer_id == user_id, Conversation.seller_id == user_id))
                .order_by(desc(Conversation.last_message_at))
                .all()
            )
            return [ConversationOut.model_validate(r) for r in rows]

        return await self._read("list_conversations", query)

    async def delete_conversation(self, conversation_id):
        def work(db):
            row = db.get(Conversation, conversation_id)
            if row is None:
                return 0, []
            messages = db.query(Message).filter(Message.conversation_id == conversation_id).all()
            changes = [_change("messages", "DELETE", old=_row(m)) for m in messages]
            changes.append(_change("conversations", "DELETE", old=_row(row)))
            # explicit so the cascade holds without database-level FK enforcement
            db.query(Message).filter(Message.conversation_id == conversation_id).delete(
                synchronize_session=False
            )
            db.delete(row)
            db.commit()
            return 1, changes

        return await self._run("delete_conversation", work)

    # ---------- messages ----------
    async def insert_message(self, conversation_id, sender_id, receiver_id, content, client_id=None):
        def work(db):
            msg = Message(
                conversation_id=conversation_id,
                sender_id=sender_id,
                receiver_id=receiver_id,
                content=content,
                is_read=False,
                is_delivered=False,
                client_id=client_id,
                created_at=utcnow(),
            )
            db.add(msg)

            # keep the inbox snapshot in the same transaction as the message
            conv = db.get(Conversation, conversation_id)
            if conv is not None:
                conv.last_message = content
                conv.last_message_at = msg.created_at

            db.commit()
            db.refresh(msg)
            changes = [_change("messages", "INSERT", new=_row(msg))]
            if conv is not None:
                changes.append(_change("conversations", "UPDATE", new=_row(conv)))
            return MessageOut.model_validate(msg), changes

        return await self._run("insert_message", work)

    async def list_messages(self, conversation_id):
        def query(db):
            rows = (
                db.query(Message)
                .filter(Message.conversation_id == conversation_id)
                .order_by(Message.created_at.asc(), Message.id.asc())
                .all()
            )
            return [MessageOut.model_validate(r) for r in rows]

        return await self._read("list_messages", query)

    def _flip(self, db: Session, where, values: Dict[str, bool], old: Dict[str, bool]):
        # RETURNING names exactly the rows this statement changed
        ids = db.execute(
            update(Message)
            .where(where)
            .values(**values)
            .returning(Message.id)
            .execution_options(synchronize_session=False)
        ).scalars().all()
        db.commit()
        if not ids:
            return 0, []
        rows = db.query(Message).filter(Message.id.in_(ids)).all()
        return len(ids), [_change("messages", "UPDATE", new=_row(m), old={"id": m.id, **old}) for m in rows]

    async def update_messages_read_flag(self, conversation_id, exclude_sender_id):
        unread = and_(
            Message.conversation_id == conversation_id,
            Message.sender_id != exclude_sender_id,
            Message.is_read.is_(False),
        )
        return await self._run(
            "update_messages_read_flag",
            lambda db: self._flip(db, unread, {"is_read": True, "is_delivered": True}, {"is_read": False}),
        )

    async def update_messages_delivered_flag(self, conversation_id, receiver_id):
        undelivered = and_(
            Message.conversation_id == conversation_id,
            Message.receiver_id == receiver_id,
            Message.is_delivered.is_(False),
        )
        return await self._run(
            "update_messages_delivered_flag",
            lambda db: self._flip(db, undelivered, {"is_delivered": True}, {"is_delivered": False}),
        )

    async def count_unread(self, conversation_id, user_id):
        def query(db):
            return (
                db.query(func.count(Message.id))
                .filter(
                    Message.conversation_id == conversation_id,
                    Message.sender_id != user_id,
                    Message.is_read.is_(False),
                )
                .scalar()
                or 0
            )

        return await self._read("count_unread", query)

    async def delete_messages(self, conversation_id):
        def work(db):
            rows = db.query(Message).filter(Message.conversation_id == conversation_id).all()
            changes = [_change("messages", "DELETE", old=_row(m)) for m in rows]
            db.query(Message).filter(Message.conversation_id == conversation_id).delete(
                synchronize_session=False
            )
            db.commit()
            return len(changes), changes

        return await self._run("delete_messages", work)

    # ---------- realtime ----------
    async def subscribe_row_changes(
        self,
        table: str,
        filter: Dict[str, Any],
        on_event: Listener,
        on_error: Optional[ErrorHandler] = None,
    ) -> Subscription:
        return self.feed.subscribe(table, filter, on_event, on_error)

    async def unsubscribe(self, subscription: Subscription) -> None:
        self.feed.unsubscribe(subscription)

    # ---------- presence ----------
    async def upsert_presence(self, user_id: str, is_online: bool, last_seen: datetime) -> PresenceOut:
        def work(db):
            row = db.get(Presence, user_id)
            event_type = "UPDATE"
            if row is None:
                row = Presence(user_id=user_id)
                db.add(row)
                event_type = "INSERT"
            row.is_online = is_online
            row.last_seen = last_seen
            db.commit()
            db.refresh(row)
            return PresenceOut.model_validate(row), [_change("user_presence", event_type, new=_row(row))]

        return await self._run("upsert_presence", work)

    async def fetch_presence(self, user_id):
        def query(db):
            row = db.get(Presence, user_id)
            return PresenceOut.model_validate(row) if row else None

        return await self._read("fetch_presence", query)

    # ---------- blocks / profiles ----------
    @staticmethod
    def _pair(user_a: str, user_b: str):
        return or_(
            and_(BlockedUser.blocker_id == user_a, BlockedUser.blocked_id == user_b),
            and_(BlockedUser.blocker_id == user_b, BlockedUser.blocked_id == user_a),
        )

    async def upsert_block(self, blocker_id, blocked_id):
        def work(db):
            row = (
                db.query(BlockedUser)
                .filter(BlockedUser.blocker_id == blocker_id, BlockedUser.blocked_id == blocked_id)
                .first()
            )
            if row is not None:
                return BlockOut.model_validate(row), []
            row = BlockedUser(blocker_id=blocker_id, blocked_id=blocked_id)
            db.add(row)
            db.commit()
            db.refresh(row)
            return BlockOut.model_validate(row), [_change("blocked_users", "INSERT", new=_row(row))]

        return await self._run("upsert_block", work)

    async def delete_blocks(self, user_a, user_b):
        def work(db):
            rows = db.query(BlockedUser).filter(self._pair(user_a, user_b)).all()
            changes = [_change("blocked_users", "DELETE", old=_row(r)) for r in rows]
            for r in rows:
                db.delete(r)
            db.commit()
            return len(changes), changes

        return await self._run("delete_blocks", work)

    async def find_block(self, user_a, user_b):
        def query(db):
            row = db.query(BlockedUser).filter(self._pair(user_a, user_b)).first()
            return BlockOut.model_validate(row) if row else None

        return await self._read("find_block", query)

    async def get_profile(self, user_id):
        def query(db):
            row = db.get(Profile, user_id)
            return ProfileSummary.model_validate(row) if row else None

        return await self._read("get_profile", query)
