import uuid
from datetime import datetime, timezone


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    # python-side so that rows inserted within one second still sort
    return datetime.now(timezone.utc)
