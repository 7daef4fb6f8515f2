import logging

from kiram_chat.core.exceptions import InvalidArgument, NotFound
from kiram_chat.repositories.conversation_repository import ConversationRepository
from kiram_chat.repositories.message_repository import MessageRepository
from kiram_chat.schemas.conversation import Conversation

logger = logging.getLogger(__name__)


class ReadTracker:

    def __init__(self, message_repo: MessageRepository, conversation_repo: ConversationRepository) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo

    async def _reader_slot(self, conversation_id: str, reader_id: str):
        doc = await self._conversation_repo.get(conversation_id)
        if doc is None:
            raise NotFound(f"Conversation {conversation_id} not found")
        conversation = Conversation.from_document(doc)
        if not conversation.has_participant(reader_id):
            raise InvalidArgument(f"{reader_id} is not a participant of {conversation_id}")
        return conversation.slot_for(reader_id)

    async def mark_read(self, conversation_id: str, message_id: str, reader_id: str) -> bool:
        """
        Mark one message read by its receiver.

        Only the call that actually flips ``is_read`` touches the reader's
        unread counter, and the counter is clamped at zero, so repeated or
        concurrent calls never double-decrement.

        Returns:
            True if this call changed the message, False if it was already read.
        """
        slot = await self._reader_slot(conversation_id, reader_id)
        flipped = await self._message_repo.mark_read_once(conversation_id, message_id, reader_id)
        if flipped:
            await self._conversation_repo.decrement_unread(conversation_id, slot)
            logger.info(f"Message {message_id} read by {reader_id}")
        return flipped

    async def mark_conversation_read(self, conversation_id: str, reader_id: str) -> int:
        slot = await self._reader_slot(conversation_id, reader_id)
        modified = await self._message_repo.mark_all_read(conversation_id, reader_id)
        await self._conversation_repo.reset_unread(conversation_id, slot)
        logger.info(f"{modified} messages in {conversation_id} read by {reader_id}")
        return modified
