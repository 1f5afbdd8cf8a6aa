# carchat/models/chat.py
from sqlalchemy import Boolean, Column, String, Text, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from carchat.core.db import Base
from carchat.models.car import Car
from carchat.models.ids import new_id, utcnow
from carchat.models.user import Profile


class Conversation(Base):
    __tablename__ = "conversations"
    id = Column(String(36), primary_key=True, default=new_id)
    # nullable: a conversation may outlive the listing it started from
    car_id = Column(String(36), ForeignKey("cars.id", ondelete="SET NULL"), nullable=True, index=True)
    buyer_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    seller_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    last_message = Column(Text, nullable=True)
    last_message_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    __table_args__ = (UniqueConstraint("car_id", "buyer_id", "seller_id", name="uq_conversation_car_buyer_seller"),)

    messages = relationship("Message", back_populates="conversation", cascade="all, delete-orphan", passive_deletes=True)
    car = relationship(Car, lazy="joined")
    buyer = relationship(Profile, foreign_keys=[buyer_id], lazy="joined")
    seller = relationship(Profile, foreign_keys=[seller_id], lazy="joined")


class Message(Base):
    __tablename__ = "messages"
    id = Column(String(36), primary_key=True, default=new_id)
    conversation_id = Column(String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    receiver_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    is_delivered = Column(Boolean, nullable=False, default=False)
    # correlation id chosen by the sending client, echoed back in realtime events
    client_id = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    conversation = relationship("Conversation", back_populates="messages")


class Presence(Base):
    __tablename__ = "user_presence"

    # one row per user, upsert target
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True)
    is_online = Column(Boolean, nullable=False, default=False)
    last_seen = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class BlockedUser(Base):
    __tablename__ = "blocked_users"

    id = Column(String(36), primary_key=True, default=new_id)
    blocker_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    blocked_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        # one row per (blocker, blocked) pair
        UniqueConstraint("blocker_id", "blocked_id", name="uq_block_pair"),
    )
