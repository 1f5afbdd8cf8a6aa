# carchat/routers/health.py
from fastapi import APIRouter, Depends

from carchat.core.deps import get_change_feed
from carchat.gateway.realtime import ChangeFeed

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
async def health(feed: ChangeFeed = Depends(get_change_feed)):
    return {"status": "ok", "subscriptions": len(feed)}
