from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field

from kiram_chat.models.message import AttachmentType


class Message(BaseModel):

    message_id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    content: str = ""
    attachment_url: Optional[str] = None
    attachment_type: AttachmentType = AttachmentType.NONE
    timestamp: int
    is_read: bool = False
    is_edited: bool = False
    is_deleted: bool = False

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "Message":
        data = {k: v for k, v in doc.items() if k != "_id"}
        return cls(**data)


class SendMessageRequest(BaseModel):

    sender_id: str
    receiver_id: str
    content: str = ""
    attachment_type: AttachmentType = AttachmentType.NONE
    attachment_url: Optional[str] = None


class EditMessageRequest(BaseModel):

    editor_id: str
    content: str = Field(min_length=1)


class ReadReceipt(BaseModel):

    reader_id: str


class AttachmentUploadResponse(BaseModel):

    url: str
    extension: str
