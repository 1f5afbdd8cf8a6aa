# carchat/gateway/base.py
"""Contract of the remote data gateway consumed by the chat core.

Implementations raise ``GatewayError`` (``ConflictError`` for uniqueness
violations) and never return partial results.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from carchat.gateway.realtime import ErrorHandler, Listener, Subscription
from carchat.schemas.chat import (
    BlockOut,
    ConversationOut,
    MessageOut,
    PresenceOut,
    ProfileSummary,
)


class DataGateway(ABC):
    # ---------- conversations ----------
    @abstractmethod
    async def find_conversation(
        self, car_id: Optional[str], buyer_id: str, seller_id: str
    ) -> Optional[ConversationOut]:
        ...

    @abstractmethod
    async def create_conversation(
        self, car_id: Optional[str], buyer_id: str, seller_id: str
    ) -> ConversationOut:
        ...

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Optional[ConversationOut]:
        ...

    @abstractmethod
    async def list_conversations(self, user_id: str) -> List[ConversationOut]:
        ...

    @abstractmethod
    async def delete_conversation(self, conversation_id: str) -> int:
        ...

    # ---------- messages ----------
    @abstractmethod
    async def insert_message(
        self,
        conversation_id: str,
        sender_id: str,
        receiver_id: str,
        content: str,
        client_id: Optional[str] = None,
    ) -> MessageOut:
        ...

    @abstractmethod
    async def list_messages(self, conversation_id: str) -> List[MessageOut]:
        ...

    @abstractmethod
    async def update_messages_read_flag(self, conversation_id: str, exclude_sender_id: str) -> int:
        ...

    @abstractmethod
    async def update_messages_delivered_flag(self, conversation_id: str, receiver_id: str) -> int:
        ...

    @abstractmethod
    async def count_unread(self, conversation_id: str, user_id: str) -> int:
        ...

    @abstractmethod
    async def delete_messages(self, conversation_id: str) -> int:
        ...

    # ---------- realtime ----------
    @abstractmethod
    async def subscribe_row_changes(
        self,
        table: str,
        filter: Dict[str, Any],
        on_event: Listener,
        on_error: Optional[ErrorHandler] = None,
    ) -> Subscription:
        ...

    @abstractmethod
    async def unsubscribe(self, subscription: Subscription) -> None:
        ...

    # ---------- presence ----------
    @abstractmethod
    async def upsert_presence(self, user_id: str, is_online: bool, last_seen: datetime) -> PresenceOut:
        ...

    @abstractmethod
    async def fetch_presence(self, user_id: str) -> Optional[PresenceOut]:
        ...

    # ---------- blocks / profiles ----------
    @abstractmethod
    async def upsert_block(self, blocker_id: str, blocked_id: str) -> BlockOut:
        ...

    @abstractmethod
    async def delete_blocks(self, user_a: str, user_b: str) -> int:
        ...

    @abstractmethod
    async def find_block(self, user_a: str, user_b: str) -> Optional[BlockOut]:
        ...

    @abstractmethod
    async def get_profile(self, user_id: str) -> Optional[ProfileSummary]:
        ...
