"""Errors raised by the messaging engine.

Every error carries the HTTP status the API layer answers with, so routers
never have to translate them one by one.
"""

from fastapi import status


class ChatError(Exception):
    """Base error for the messaging engine."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable: bool = False

    def __init__(self, detail: str = "Chat operation failed"):
        super().__init__(detail)
        self.detail = detail


class NotFound(ChatError):
    """Referenced message or conversation does not exist."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(detail)


class InvalidArgument(ChatError):
    """
    Caller broke the operation contract.

    Examples: sender equal to receiver, ``attachment_type=none`` passed to an
    upload, or a URL attached to a message declared without attachment.
    Never retried automatically.
    """

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str = "Invalid argument"):
        super().__init__(detail)


class UploadFailed(ChatError):
    """Object storage rejected the attachment transfer."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, detail: str = "Attachment upload failed"):
        super().__init__(detail)


class StoreUnavailable(ChatError):
    """Transient backing-store failure; safe to retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True

    def __init__(self, detail: str = "Message store unavailable"):
        super().__init__(detail)


class SummaryUpdateFailed(ChatError):
    """
    The denormalized conversation summary could not be written.

    Never raised to a send caller: the message is already persisted and is
    the source of truth. Reported through the diagnostics channel instead.
    """

    def __init__(self, conversation_id: str, detail: str = "Conversation summary update failed"):
        super().__init__(detail)
        self.conversation_id = conversation_id


__all__ = [
    "ChatError",
    "NotFound",
    "InvalidArgument",
    "UploadFailed",
    "StoreUnavailable",
    "SummaryUpdateFailed",
]
