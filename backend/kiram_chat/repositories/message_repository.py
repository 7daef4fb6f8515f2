import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument

from kiram_chat.core.exceptions import InvalidArgument, NotFound
from kiram_chat.database.errors import translate_store_errors
from kiram_chat.models.message import MESSAGE_FLAGS, AttachmentType, MessageDocument
from kiram_chat.utils.realtime_bus import conversation_channel, publish_change
from kiram_chat.utils.timeutil import now_ms

logger = logging.getLogger(__name__)

# ties on timestamp fall back to ObjectId, i.e. insertion order
ORDER = [("timestamp", ASCENDING), ("_id", ASCENDING)]


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase, bus) -> None:
        self._db = db
        self._bus = bus

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("timestamp", ASCENDING), ("_id", ASCENDING)])
        await self.collection.create_index([("message_id", ASCENDING)], unique=True)

    async def _notify(self, conversation_id: str, message_id: Optional[str] = None) -> None:
        await publish_change(
            self._bus,
            [conversation_channel(conversation_id)],
            {"type": "messages_changed", "conversation_id": conversation_id, "message_id": message_id},
        )

    @translate_store_errors
    async def append(self, message: Dict[str, Any]) -> MessageDocument:
        oid = ObjectId()
        doc: MessageDocument = {
            "_id": oid,
            "message_id": message.get("message_id") or str(oid),
            "conversation_id": message["conversation_id"],
            "sender_id": message["sender_id"],
            "receiver_id": message["receiver_id"],
            "content": message.get("content", ""),
            "attachment_url": message.get("attachment_url"),
            "attachment_type": AttachmentType(message.get("attachment_type", AttachmentType.NONE)).value,
            "timestamp": now_ms() if message.get("timestamp") is None else message["timestamp"],
            "is_read": bool(message.get("is_read", False)),
            "is_edited": bool(message.get("is_edited", False)),
            "is_deleted": bool(message.get("is_deleted", False)),
        }
        await self.collection.insert_one(doc)
        logger.info(f"Message {doc['message_id']} appended to {doc['conversation_id']}")
        await self._notify(doc["conversation_id"], doc["message_id"])
        return doc

    @translate_store_errors
    async def list_ordered(self, conversation_id: str) -> List[MessageDocument]:
        items = []
        async for doc in self.collection.find({"conversation_id": conversation_id}).sort(ORDER):
            items.append(doc)
        return items

    @translate_store_errors
    async def count(self, conversation_id: str) -> int:
        return await self.collection.count_documents({"conversation_id": conversation_id})

    @translate_store_errors
    async def get(self, conversation_id: str, message_id: str) -> Optional[MessageDocument]:
        return await self.collection.find_one({"conversation_id": conversation_id, "message_id": message_id})

    @translate_store_errors
    async def set_flag(self, conversation_id: str, message_id: str, flag: str, value: bool) -> None:
        if flag not in MESSAGE_FLAGS:
            raise InvalidArgument(f"Unknown message flag: {flag}")
        result = await self.collection.update_one(
            {"conversation_id": conversation_id, "message_id": message_id},
            {"$set": {flag: bool(value)}},
        )
        if not result.matched_count:
            raise NotFound(f"Message {message_id} not found in {conversation_id}")
        if result.modified_count:
            await self._notify(conversation_id, message_id)

    @translate_store_errors
    async def mark_read_once(self, conversation_id: str, message_id: str, reader_id: str) -> bool:
        """Flip is_read for the reader's message; True only for the call that flipped it."""
        result = await self.collection.update_one(
            {
                "conversation_id": conversation_id,
                "message_id": message_id,
                "receiver_id": reader_id,
                "is_read": False,
            },
            {"$set": {"is_read": True}},
        )
        if result.modified_count:
            await self._notify(conversation_id, message_id)
            return True
        existing = await self.get(conversation_id, message_id)
        if existing is None:
            raise NotFound(f"Message {message_id} not found in {conversation_id}")
        if existing["receiver_id"] != reader_id:
            raise InvalidArgument(f"{reader_id} is not the receiver of message {message_id}")
        return False

    @translate_store_errors
    async def mark_all_read(self, conversation_id: str, reader_id: str) -> int:
        result = await self.collection.update_many(
            {"conversation_id": conversation_id, "receiver_id": reader_id, "is_read": False},
            {"$set": {"is_read": True}},
        )
        modified = result.modified_count or 0
        if modified:
            await self._notify(conversation_id)
        return modified

    @translate_store_errors
    async def update_content(self, conversation_id: str, message_id: str, content: str) -> MessageDocument:
        doc = await self.collection.find_one_and_update(
            {"conversation_id": conversation_id, "message_id": message_id},
            {"$set": {"content": content, "is_edited": True}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise NotFound(f"Message {message_id} not found in {conversation_id}")
        await self._notify(conversation_id, message_id)
        return doc
