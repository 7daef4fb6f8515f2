import asyncio
import logging
from typing import List, Optional, Set

from kiram_chat.core.exceptions import ChatError, InvalidArgument, NotFound, SummaryUpdateFailed
from kiram_chat.models.message import AttachmentType
from kiram_chat.repositories.conversation_repository import ConversationRepository
from kiram_chat.repositories.message_repository import MessageRepository
from kiram_chat.schemas.conversation import Conversation
from kiram_chat.schemas.message import Message
from kiram_chat.services.attachment_service import AttachmentService, UploadedAttachment
from kiram_chat.services.live_subscription import ErrorCallback, LiveSubscription, SnapshotCallback
from kiram_chat.services.read_tracker import ReadTracker
from kiram_chat.utils.diagnostics import DiagnosticsChannel
from kiram_chat.utils.identity import derive_key
from kiram_chat.utils.realtime_bus import conversation_channel, user_channel

logger = logging.getLogger(__name__)


class ChatService:

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        bus,
        attachments: AttachmentService,
        diagnostics: Optional[DiagnosticsChannel] = None,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._bus = bus
        self._attachments = attachments
        self._read_tracker = ReadTracker(message_repo, conversation_repo)
        self.diagnostics = diagnostics or DiagnosticsChannel()
        self._pending: Set[asyncio.Task] = set()

    # conversations

    async def get_or_create_conversation(self, user_a: str, user_b: str) -> Conversation:
        doc = await self._conversation_repo.get_or_create(user_a, user_b)
        return Conversation.from_document(doc)

    async def get_conversation(self, conversation_id: str) -> Conversation:
        doc = await self._conversation_repo.get(conversation_id)
        if doc is None:
            raise NotFound(f"Conversation {conversation_id} not found")
        return Conversation.from_document(doc)

    async def list_conversations(self, user_id: str) -> List[Conversation]:
        docs = await self._conversation_repo.list_for_participant(user_id)
        return [Conversation.from_document(d) for d in docs]

    # messages

    async def list_messages(self, conversation_id: str) -> List[Message]:
        docs = await self._message_repo.list_ordered(conversation_id)
        return [Message.from_document(d) for d in docs]

    async def upload_attachment(self, conversation_id: str, attachment_type: AttachmentType, data: bytes) -> UploadedAttachment:
        await self.get_conversation(conversation_id)
        return await self._attachments.upload(conversation_id, attachment_type, data)

    def _validate_send(
        self,
        conversation_id: str,
        sender_id: str,
        receiver_id: str,
        attachment_type: AttachmentType,
        attachment_url: Optional[str],
        attachment_data: Optional[bytes],
    ) -> None:
        if sender_id == receiver_id:
            raise InvalidArgument("Sender and receiver must differ")
        key, _ = derive_key(sender_id, receiver_id)
        if key != conversation_id:
            raise InvalidArgument(f"{sender_id} and {receiver_id} are not the participants of {conversation_id}")
        if attachment_type is AttachmentType.NONE:
            if attachment_url is not None or attachment_data is not None:
                raise InvalidArgument("Attachment given but attachment_type is 'none'")
            return
        if attachment_url is not None and attachment_data is not None:
            raise InvalidArgument("Pass either attachment_url or attachment_data, not both")
        if attachment_url is None and attachment_data is None:
            raise InvalidArgument(f"attachment_type '{attachment_type.value}' needs an attachment")

    async def send_message(
        self,
        conversation_id: str,
        sender_id: str,
        receiver_id: str,
        content: str = "",
        attachment_type: AttachmentType = AttachmentType.NONE,
        attachment_url: Optional[str] = None,
        attachment_data: Optional[bytes] = None,
    ) -> Message:
        """
        Persist a message, uploading its attachment first when bytes are given.

        The receiver's unread counter is bumped before the message is stored
        (and rolled back if the append fails); the last-message summary is
        updated in the background afterwards. A failure in either never fails
        the send; it is reported on :attr:`diagnostics`.
        """
        attachment_type = AttachmentType(attachment_type)
        self._validate_send(conversation_id, sender_id, receiver_id, attachment_type, attachment_url, attachment_data)
        conversation = await self.get_conversation(conversation_id)

        if attachment_data is not None:
            uploaded = await self._attachments.upload(conversation_id, attachment_type, attachment_data)
            attachment_url = uploaded.url

        # counted before the message is visible, so no read can reach it first
        receiver_slot = conversation.slot_for(receiver_id)
        counted = await self._count_unread(conversation_id, receiver_slot)
        try:
            doc = await self._message_repo.append(
                {
                    "conversation_id": conversation_id,
                    "sender_id": sender_id,
                    "receiver_id": receiver_id,
                    "content": content,
                    "attachment_url": attachment_url,
                    "attachment_type": attachment_type,
                }
            )
        except ChatError:
            if counted:
                await self._uncount_unread(conversation_id, receiver_slot)
            raise
        message = Message.from_document(doc)
        self._schedule(self._update_summary(conversation_id, message.content, message.timestamp))
        return message

    def _schedule(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _count_unread(self, conversation_id: str, slot) -> bool:
        try:
            await self._conversation_repo.increment_unread(conversation_id, slot)
            return True
        except ChatError as e:
            await self.diagnostics.report(SummaryUpdateFailed(conversation_id, f"Unread count of {conversation_id} not updated: {e.detail}"))
            return False

    async def _uncount_unread(self, conversation_id: str, slot) -> None:
        try:
            await self._conversation_repo.decrement_unread(conversation_id, slot)
        except ChatError as e:
            logger.error(f"Could not roll back unread count of {conversation_id}: {e.detail}")

    async def _update_summary(self, conversation_id: str, content: str, timestamp: int) -> None:
        try:
            await self._conversation_repo.update_summary(conversation_id, content, timestamp)
        except ChatError as e:
            await self.diagnostics.report(SummaryUpdateFailed(conversation_id, f"Summary of {conversation_id} not updated: {e.detail}"))

    async def wait_for_pending(self) -> None:
        """Wait for background summary updates (shutdown, tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _own_message(self, conversation_id: str, message_id: str, user_id: str) -> dict:
        doc = await self._message_repo.get(conversation_id, message_id)
        if doc is None:
            raise NotFound(f"Message {message_id} not found in {conversation_id}")
        if doc["sender_id"] != user_id:
            raise InvalidArgument(f"Only the sender can change message {message_id}")
        if doc.get("is_deleted"):
            raise InvalidArgument(f"Message {message_id} is deleted")
        return doc

    async def edit_message(self, conversation_id: str, message_id: str, editor_id: str, content: str) -> Message:
        await self._own_message(conversation_id, message_id, editor_id)
        doc = await self._message_repo.update_content(conversation_id, message_id, content)
        return Message.from_document(doc)

    async def delete_message(self, conversation_id: str, message_id: str, user_id: str) -> None:
        await self._own_message(conversation_id, message_id, user_id)
        await self._message_repo.set_flag(conversation_id, message_id, "is_deleted", True)
        logger.info(f"Message {message_id} soft-deleted by {user_id}")

    # read state

    async def mark_message_read(self, conversation_id: str, message_id: str, reader_id: str) -> bool:
        return await self._read_tracker.mark_read(conversation_id, message_id, reader_id)

    async def mark_conversation_read(self, conversation_id: str, reader_id: str) -> int:
        return await self._read_tracker.mark_conversation_read(conversation_id, reader_id)

    # live views

    async def subscribe_messages(
        self, conversation_id: str, on_snapshot: SnapshotCallback, on_error: Optional[ErrorCallback] = None
    ) -> LiveSubscription:
        return await LiveSubscription.start(
            self._bus,
            conversation_channel(conversation_id),
            lambda: self.list_messages(conversation_id),
            on_snapshot,
            on_error,
        )

    async def subscribe_conversations(
        self, user_id: str, on_snapshot: SnapshotCallback, on_error: Optional[ErrorCallback] = None
    ) -> LiveSubscription:
        return await LiveSubscription.start(
            self._bus,
            user_channel(user_id),
            lambda: self.list_conversations(user_id),
            on_snapshot,
            on_error,
        )
