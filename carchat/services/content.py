# carchat/services/content.py
"""Tagged message content.

Stored rows carry attachments inline in ``content``:

    [IMAGE]<url>
    [FILE]<name>|<url>

The markers are part of the stored data format and must not change.
"""
from typing import Literal, Optional

from pydantic import BaseModel

from carchat.core.errors import ValidationFailure

IMAGE_MARKER = "[IMAGE]"
FILE_MARKER = "[FILE]"
FILE_SEPARATOR = "|"


class MessageContent(BaseModel):
    kind: Literal["text", "image", "file"]
    text: Optional[str] = None
    url: Optional[str] = None
    file_name: Optional[str] = None


def parse_content(content: str) -> MessageContent:
    if content.startswith(IMAGE_MARKER):
        return MessageContent(kind="image", url=content[len(IMAGE_MARKER):])
    if content.startswith(FILE_MARKER):
        name, _, url = content[len(FILE_MARKER):].partition(FILE_SEPARATOR)
        return MessageContent(kind="file", file_name=name, url=url)
    return MessageContent(kind="text", text=content)


def image_content(url: str) -> str:
    if not url:
        raise ValidationFailure("empty_attachment_url")
    return f"{IMAGE_MARKER}{url}"


def file_content(file_name: str, url: str) -> str:
    if not url:
        raise ValidationFailure("empty_attachment_url")
    if FILE_SEPARATOR in (file_name or ""):
        raise ValidationFailure("invalid_file_name")
    return f"{FILE_MARKER}{file_name or 'file'}{FILE_SEPARATOR}{url}"
