# carchat/core/errors.py
"""Typed failures raised by the chat core.

Every failure carries a snake_case ``detail`` code and the HTTP status the
routers answer with, so the HTTP layer can translate them without a lookup
table of its own.
"""
from typing import Optional


class ChatError(Exception):
    status_code = 500
    default_detail = "chat_error"

    def __init__(self, detail: Optional[str] = None, message: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(message or self.detail)


class GatewayError(ChatError):
    """Raised by gateway implementations when the data store call fails."""

    status_code = 502
    default_detail = "gateway_error"


class LookupFailure(ChatError):
    """The gateway could not be queried. Never a synonym for "not found"."""

    status_code = 502
    default_detail = "lookup_failed"


class CreationFailure(ChatError):
    """An insert failed. Callers must not retry without user intervention."""

    status_code = 502
    default_detail = "creation_failed"


class UpdateFailure(ChatError):
    status_code = 502
    default_detail = "update_failed"


class SubscriptionFailure(ChatError):
    status_code = 503
    default_detail = "subscription_failed"


class ValidationFailure(ChatError):
    """Bad input or a caller acting outside its conversation."""

    status_code = 400
    default_detail = "invalid_request"


class NotFoundFailure(ChatError):
    status_code = 404
    default_detail = "conversation_not_found"


class ConflictError(GatewayError):
    """A uniqueness constraint rejected the write."""

    status_code = 409
    default_detail = "conflict"
