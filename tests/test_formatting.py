from datetime import datetime, timezone

from carchat.schemas.chat import MessageOut
from carchat.services.formatting import (
    format_list_time,
    format_message_time,
    message_status,
    preview_text,
)


def _msg(**kw):
    data = dict(
        id="m1",
        conversation_id="c1",
        sender_id="me",
        receiver_id="you",
        content="halo",
        is_read=False,
        is_delivered=False,
        created_at=datetime(2026, 3, 1, 2, 5, tzinfo=timezone.utc),
    )
    data.update(kw)
    return MessageOut(**data)


def test_status_of_own_messages():
    assert message_status(_msg(), "me") == "sent"
    assert message_status(_msg(is_delivered=True), "me") == "delivered"
    assert message_status(_msg(is_delivered=True, is_read=True), "me") == "read"


def test_no_status_for_inbound():
    assert message_status(_msg(is_read=True), "you") is None


def test_message_time_in_wib():
    # 02:05 UTC is 09:05 WIB
    assert format_message_time(datetime(2026, 3, 1, 2, 5, tzinfo=timezone.utc)) == "09:05"


def test_message_time_accepts_naive_utc():
    assert format_message_time(datetime(2026, 3, 1, 20, 30)) == "03:30"


def test_list_time_today():
    now = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
    ts = datetime(2026, 3, 1, 8, 15, tzinfo=timezone.utc)
    assert format_list_time(ts, now=now) == "15:15"


def test_list_time_yesterday():
    now = datetime(2026, 3, 2, 3, 0, tzinfo=timezone.utc)
    ts = datetime(2026, 3, 1, 8, 15, tzinfo=timezone.utc)
    assert format_list_time(ts, now=now) == "Yesterday"


def test_list_time_older():
    now = datetime(2026, 3, 10, 3, 0, tzinfo=timezone.utc)
    ts = datetime(2026, 3, 1, 8, 15, tzinfo=timezone.utc)
    assert format_list_time(ts, now=now) == "1 Mar"


def test_preview_text():
    assert preview_text(None) == ""
    assert preview_text("Bisa nego?") == "Bisa nego?"
    assert preview_text("[IMAGE]https://x/y.png") == "Photo"
    assert preview_text("[FILE]stnk.pdf|https://x/stnk.pdf") == "File: stnk.pdf"
