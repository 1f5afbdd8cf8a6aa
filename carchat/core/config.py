# carchat/core/config.py
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./carchat.db"

    JWT_SECRET: str = "change-this-secret"
    JWT_ALG: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 120

    CORS_ORIGINS: List[str] = [
        "http://localhost:8081",
        "http://127.0.0.1:8081",
    ]
    LOG_LEVEL: str = "INFO"

    # presence heartbeat cadence while a chat room is open
    PRESENCE_HEARTBEAT_SECONDS: float = 10.0

    # debounce before flipping read flags
    READ_DELAY_ON_FOCUS: float = 0.5
    READ_DELAY_ON_FOREGROUND: float = 0.3
    READ_DELAY_ON_INBOUND: float = 0.2

    # times are shown in WIB
    DISPLAY_UTC_OFFSET_HOURS: int = 7

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


settings = Settings()
