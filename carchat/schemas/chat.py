# carchat/schemas/chat.py
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field, field_validator

from .base import BaseSchema


# ===== rows =====
class ProfileSummary(BaseSchema):
    id: str
    full_name: str
    avatar_url: Optional[str] = None


class CarSummary(BaseSchema):
    id: str
    brand: str
    model: str
    year: int
    price: int
    images: List[str] = []
    is_sold: bool = False


class ConversationOut(BaseSchema):
    id: str
    car_id: Optional[str] = None
    buyer_id: str
    seller_id: str
    last_message: Optional[str] = None
    last_message_at: datetime
    created_at: datetime
    car: Optional[CarSummary] = None
    buyer: Optional[ProfileSummary] = None
    seller: Optional[ProfileSummary] = None

    def other_participant(self, user_id: str) -> str:
        return self.seller_id if self.buyer_id == user_id else self.buyer_id

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.buyer_id, self.seller_id)


class MessageOut(BaseSchema):
    id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    content: str
    is_read: bool
    is_delivered: bool
    client_id: Optional[str] = None
    created_at: datetime


class PresenceOut(BaseSchema):
    user_id: str
    is_online: bool
    last_seen: Optional[datetime] = None


class BlockOut(BaseSchema):
    id: str
    blocker_id: str
    blocked_id: str


class BlockStatusOut(BaseSchema):
    blocked: bool
    blocked_by: Optional[str] = None


# ===== inbox =====
class ConversationSummary(BaseSchema):
    conversation: ConversationOut
    role: Literal["buyer", "seller"]
    counterpart: Optional[ProfileSummary] = None
    car: Optional[CarSummary] = None
    preview: str = ""
    time_label: str = ""
    unread_count: int = 0


# ===== realtime =====
class RowChange(BaseSchema):
    table: str
    event_type: Literal["INSERT", "UPDATE", "DELETE"]
    new: Dict[str, Any] = {}
    old: Dict[str, Any] = {}

    @property
    def record(self) -> Dict[str, Any]:
        return self.new or self.old


# ===== requests / responses =====
class CreateChatIn(BaseSchema):
    car_id: Optional[str] = None
    seller_id: str


class SendMessageIn(BaseSchema):
    content: str
    client_id: Optional[str] = None


class PresenceIn(BaseSchema):
    is_online: bool


class ReadOut(BaseSchema):
    updated: int


class UnreadOut(BaseSchema):
    total: int


class DeletedOut(BaseSchema):
    deleted: int


# ===== websocket =====
class SubscribeIn(BaseSchema):
    event: Literal["subscribe"]
    table: Literal["messages", "conversations", "user_presence", "blocked_users"]
    filter: Dict[str, str] = Field(default_factory=dict)

    @field_validator("filter")
    @classmethod
    def v_filter(cls, v: Dict[str, str]) -> Dict[str, str]:
        if not v:
            raise ValueError("filter must name at least one column")
        return v


class UnsubscribeIn(BaseSchema):
    event: Literal["unsubscribe"]
    subscription_id: str


class SystemMessageOut(BaseSchema):
    event: Literal["system_message"] = "system_message"
    type: str
    message: str


class SubscribedOut(BaseSchema):
    event: Literal["subscribed"] = "subscribed"
    subscription_id: str
    table: str


class RowChangeOut(BaseSchema):
    event: Literal["row_change"] = "row_change"
    subscription_id: str
    change: RowChange


class ErrorOut(BaseSchema):
    event: Literal["error"] = "error"
    code: int
    message: str


class ChatListOut(BaseSchema):
    chats: List[ConversationSummary]


class MessagesOut(BaseSchema):
    messages: List[MessageOut]
