from datetime import datetime
from typing import Dict, List, Literal, Optional, TypedDict


ConversationType = Literal["PRIVATE", "GROUP"]

PRIVATE = "PRIVATE"
GROUP = "GROUP"


class ConversationDocument(TypedDict, total=False):
    _id: str
    type: ConversationType
    # insertion order is kept for display
    participant_ids: List[str]
    name: Optional[str]
    avatar: Optional[str]
    admin_ids: List[str]
    # weak reference, the message may be gone
    last_message_id: Optional[str]
    # per-user unread counters (user_id -> count)
    unread_counts: Dict[str, int]
    # sorted "a:b" for PRIVATE only, backs the unique index
    pair_key: str
    created_at: datetime
    updated_at: datetime
