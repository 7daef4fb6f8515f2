from typing import Any, Mapping

from pydantic import BaseModel

from kiram_chat.models.conversation import ParticipantSlot


class Conversation(BaseModel):

    conversation_id: str
    participant1_id: str
    participant2_id: str
    last_message: str = ""
    last_message_timestamp: int
    unread_count_1: int = 0
    unread_count_2: int = 0

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "Conversation":
        return cls(
            conversation_id=doc["_id"],
            participant1_id=doc["participant1_id"],
            participant2_id=doc["participant2_id"],
            last_message=doc.get("last_message") or "",
            last_message_timestamp=doc["last_message_timestamp"],
            unread_count_1=doc.get("unread_count_1", 0),
            unread_count_2=doc.get("unread_count_2", 0),
        )

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.participant1_id, self.participant2_id)

    def slot_for(self, user_id: str) -> ParticipantSlot:
        """Slot (1 or 2) the user occupies; ValueError for outsiders."""
        if user_id == self.participant1_id:
            return 1
        if user_id == self.participant2_id:
            return 2
        raise ValueError(f"{user_id} is not a participant of {self.conversation_id}")

    def unread_for(self, user_id: str) -> int:
        return self.unread_count_1 if self.slot_for(user_id) == 1 else self.unread_count_2


class GetOrCreateConversationRequest(BaseModel):

    user_a: str
    user_b: str
