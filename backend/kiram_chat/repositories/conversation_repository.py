import logging
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from kiram_chat.core.exceptions import InvalidArgument, NotFound
from kiram_chat.database.errors import translate_store_errors
from kiram_chat.models.conversation import ConversationDocument, ParticipantSlot
from kiram_chat.utils.identity import derive_key
from kiram_chat.utils.realtime_bus import publish_change, user_channel
from kiram_chat.utils.timeutil import now_ms

logger = logging.getLogger(__name__)


def _unread_field(slot: ParticipantSlot) -> str:
    if slot not in (1, 2):
        raise InvalidArgument(f"Participant slot must be 1 or 2, got {slot!r}")
    return f"unread_count_{slot}"


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase, bus) -> None:
        self._db = db
        self._bus = bus

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("participants", ASCENDING)])
        await self.collection.create_index([("last_message_timestamp", DESCENDING)])

    async def _notify(self, doc: ConversationDocument) -> None:
        await publish_change(
            self._bus,
            [user_channel(doc["participant1_id"]), user_channel(doc["participant2_id"])],
            {"type": "conversations_changed", "conversation_id": doc["_id"]},
        )

    async def _require(self, conversation_id: str) -> ConversationDocument:
        doc = await self.collection.find_one({"_id": conversation_id})
        if doc is None:
            raise NotFound(f"Conversation {conversation_id} not found")
        return doc

    @translate_store_errors
    async def get(self, conversation_id: str) -> Optional[ConversationDocument]:
        return await self.collection.find_one({"_id": conversation_id})

    @translate_store_errors
    async def get_or_create(self, user_a: str, user_b: str) -> ConversationDocument:
        if user_a == user_b:
            raise InvalidArgument("A conversation needs two distinct participants")
        key, (first, second) = derive_key(user_a, user_b)
        fresh: Dict[str, Any] = {
            "participant1_id": first,
            "participant2_id": second,
            "participants": [first, second],
            "last_message": "",
            "last_message_timestamp": now_ms(),
            "unread_count_1": 0,
            "unread_count_2": 0,
        }
        created = False
        try:
            # the canonical key is the only write target, so a racing creator
            # either upserts first or finds the record already there
            result = await self.collection.update_one({"_id": key}, {"$setOnInsert": fresh}, upsert=True)
            created = result.upserted_id is not None
        except DuplicateKeyError:
            logger.debug(f"Conversation {key} created concurrently; reading winner")
        doc = await self._require(key)
        if created:
            logger.info(f"Conversation {key} created")
            await self._notify(doc)
        return doc

    @translate_store_errors
    async def update_summary(self, conversation_id: str, last_message: str, timestamp: int) -> bool:
        """Set last message fields unless a newer message already did; False when skipped as stale."""
        doc = await self.collection.find_one_and_update(
            {"_id": conversation_id, "last_message_timestamp": {"$lte": timestamp}},
            {"$set": {"last_message": last_message, "last_message_timestamp": timestamp}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            await self._require(conversation_id)
            logger.debug(f"Skipped stale summary for {conversation_id} at {timestamp}")
            return False
        await self._notify(doc)
        return True

    @translate_store_errors
    async def increment_unread(self, conversation_id: str, slot: ParticipantSlot) -> None:
        doc = await self.collection.find_one_and_update(
            {"_id": conversation_id},
            {"$inc": {_unread_field(slot): 1}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise NotFound(f"Conversation {conversation_id} not found")
        await self._notify(doc)

    @translate_store_errors
    async def decrement_unread(self, conversation_id: str, slot: ParticipantSlot) -> None:
        field = _unread_field(slot)
        # never below zero
        doc = await self.collection.find_one_and_update(
            {"_id": conversation_id, field: {"$gt": 0}},
            {"$inc": {field: -1}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            await self._require(conversation_id)
            return
        await self._notify(doc)

    @translate_store_errors
    async def reset_unread(self, conversation_id: str, slot: ParticipantSlot) -> None:
        doc = await self.collection.find_one_and_update(
            {"_id": conversation_id},
            {"$set": {_unread_field(slot): 0}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise NotFound(f"Conversation {conversation_id} not found")
        await self._notify(doc)

    @translate_store_errors
    async def list_for_participant(self, user_id: str) -> List[ConversationDocument]:
        query = {"participants": user_id}
        sort = [("last_message_timestamp", DESCENDING), ("_id", ASCENDING)]
        items = []
        async for doc in self.collection.find(query).sort(sort):
            items.append(doc)
        return items
