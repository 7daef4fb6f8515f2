import logging
import uuid
from dataclasses import dataclass

from kiram_chat.config import settings
from kiram_chat.core.exceptions import InvalidArgument, UploadFailed
from kiram_chat.models.message import AttachmentType

logger = logging.getLogger(__name__)

STORAGE_MESSAGE_ATTACHMENTS = "message_attachments"

EXTENSIONS = {
    AttachmentType.PHOTO: "jpg",
    AttachmentType.DOCUMENT: "pdf",
    AttachmentType.VIDEO: "mp4",
}

CONTENT_TYPES = {
    AttachmentType.PHOTO: "image/jpeg",
    AttachmentType.DOCUMENT: "application/pdf",
    AttachmentType.VIDEO: "video/mp4",
}


@dataclass(frozen=True)
class UploadedAttachment:
    url: str
    extension: str
    path: str


class AttachmentService:
    """Stores attachment bytes before any message referencing them is written."""

    def __init__(self, storage, max_size: int = settings.MAX_ATTACHMENT_SIZE) -> None:
        self._storage = storage
        self._max_size = max_size

    async def upload(self, conversation_id: str, attachment_type: AttachmentType, data: bytes) -> UploadedAttachment:
        attachment_type = AttachmentType(attachment_type)
        if attachment_type is AttachmentType.NONE:
            raise InvalidArgument("Cannot upload an attachment of type 'none'")
        if not data:
            raise InvalidArgument("Attachment is empty")
        if len(data) > self._max_size:
            raise InvalidArgument(f"Attachment exceeds {self._max_size} bytes")

        extension = EXTENSIONS[attachment_type]
        filename = f"{conversation_id}_{uuid.uuid4()}.{extension}"
        path = f"{STORAGE_MESSAGE_ATTACHMENTS}/{filename}"

        await self._storage.put(path, data, CONTENT_TYPES[attachment_type])
        url = await self._storage.get_download_url(path)
        if not url:
            raise UploadFailed(f"No download URL for {path}")
        logger.info(f"Attachment uploaded for {conversation_id}: {path} ({len(data)} bytes)")
        return UploadedAttachment(url=url, extension=extension, path=path)
