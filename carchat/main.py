# carchat/main.py
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse

from carchat.core.config import settings
from carchat.core.db import Base, engine
from carchat.core.errors import ChatError
from carchat.routers import chat, health, presence, realtime_ws

# tables must be registered on Base before create_all
from carchat.models.user import Profile  # noqa: F401
from carchat.models.car import Car  # noqa: F401
from carchat.models.chat import BlockedUser, Conversation, Message, Presence  # noqa: F401

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("carchat")

app = FastAPI(title="Car Marketplace Chat API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Base.metadata.create_all(bind=engine)
logger.info("database %s ready, tables: %s", engine.url.get_backend_name(), sorted(Base.metadata.tables))


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


routers = [
    health.router,
    chat.router,
    presence.router,
    realtime_ws.router,
]

for r in routers:
    app.include_router(r)


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema
    schema = get_openapi(
        title=app.title,
        version="1.0.0",
        description="Conversations, messages, read state and presence for the car marketplace",
        routes=app.routes,
    )
    comps = schema.setdefault("components", {})
    schemes = comps.setdefault("securitySchemes", {})
    schemes["BearerAuth"] = {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"}
    for path, path_item in schema.get("paths", {}).items():
        if path == "/api/health":
            continue
        for op in path_item.values():
            if isinstance(op, dict):
                op["security"] = [{"BearerAuth": []}]
    app.openapi_schema = schema
    return app.openapi_schema


app.openapi = custom_openapi
