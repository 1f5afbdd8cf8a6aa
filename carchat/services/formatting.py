# carchat/services/formatting.py
from datetime import datetime, timedelta, timezone
from typing import Optional

from carchat.schemas.chat import MessageOut
from carchat.services.content import parse_content

MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def _aware(ts: datetime) -> datetime:
    # sqlite hands back naive values; everything is stored in UTC
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts


def _display_tz(offset_hours: int) -> timezone:
    return timezone(timedelta(hours=offset_hours))


def message_status(message: MessageOut, viewer_id: str) -> Optional[str]:
    """Tick state of the viewer's own messages; None for inbound ones."""
    if message.sender_id != viewer_id:
        return None
    if message.is_read:
        return "read"
    if message.is_delivered:
        return "delivered"
    return "sent"


def format_message_time(ts: datetime, offset_hours: int = 7) -> str:
    local = _aware(ts).astimezone(_display_tz(offset_hours))
    return f"{local.hour:02d}:{local.minute:02d}"


def format_list_time(ts: datetime, now: Optional[datetime] = None, offset_hours: int = 7) -> str:
    tz = _display_tz(offset_hours)
    ts = _aware(ts)
    now = _aware(now) if now is not None else datetime.now(timezone.utc)
    local = ts.astimezone(tz)
    age_hours = (now - ts).total_seconds() / 3600

    if age_hours < 24 and local.date() == now.astimezone(tz).date():
        return f"{local.hour:02d}:{local.minute:02d}"
    if age_hours < 48:
        return "Yesterday"
    return f"{local.day} {MONTHS[local.month - 1]}"


def preview_text(content: Optional[str]) -> str:
    if not content:
        return ""
    parsed = parse_content(content)
    if parsed.kind == "image":
        return "Photo"
    if parsed.kind == "file":
        return f"File: {parsed.file_name}"
    return parsed.text
