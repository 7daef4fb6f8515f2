from enum import Enum
from typing import Optional, TypedDict


class AttachmentType(str, Enum):
    NONE = "none"
    PHOTO = "photo"
    DOCUMENT = "document"
    VIDEO = "video"


# flags settable after creation
MESSAGE_FLAGS = ("is_read", "is_edited", "is_deleted")


class MessageDocument(TypedDict, total=False):
    _id: object
    message_id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    content: str
    attachment_url: Optional[str]
    attachment_type: str
    # epoch milliseconds
    timestamp: int
    is_read: bool
    is_edited: bool
    is_deleted: bool
