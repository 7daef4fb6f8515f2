from typing import List, Literal, TypedDict


ParticipantSlot = Literal[1, 2]


class ConversationDocument(TypedDict, total=False):
    # canonical key, see utils.identity.derive_key
    _id: str
    participant1_id: str
    participant2_id: str
    participants: List[str]
    last_message: str
    last_message_timestamp: int
    # per-slot unread counters
    unread_count_1: int
    unread_count_2: int
