# carchat/core/deps.py
from fastapi import Depends

from carchat.core.auth import get_current_user_id
from carchat.core.config import settings
from carchat.core.db import SessionLocal
from carchat.gateway.base import DataGateway
from carchat.gateway.realtime import ChangeFeed
from carchat.gateway.sql import SqlGateway
from carchat.services.context import ChatContext

# one feed per process: every websocket and every gateway write share it
change_feed = ChangeFeed()
gateway = SqlGateway(SessionLocal, change_feed)


def get_gateway() -> SqlGateway:
    return gateway


def get_change_feed() -> ChangeFeed:
    return change_feed


def get_chat_context(
    user_id: str = Depends(get_current_user_id),
    gw: DataGateway = Depends(get_gateway),
) -> ChatContext:
    return ChatContext(gw, user_id, settings)
