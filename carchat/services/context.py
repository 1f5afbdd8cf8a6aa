# carchat/services/context.py
from typing import Optional

from carchat.core.config import Settings, settings as default_settings
from carchat.gateway.base import DataGateway


class ChatContext:
    """What every chat component is built from.

    Holds the gateway, the signed-in user and the tuning settings. Components
    never reach for module globals, so tests hand in their own gateway and
    settings.
    """

    def __init__(self, gateway: DataGateway, user_id: str, settings: Optional[Settings] = None):
        if not user_id:
            raise ValueError("user_id is required")
        self.gateway = gateway
        self.user_id = user_id
        self.settings = settings or default_settings

    def __repr__(self) -> str:
        return f"<ChatContext user={self.user_id}>"
