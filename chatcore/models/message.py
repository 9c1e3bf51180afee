from datetime import datetime
from typing import List, Literal, Optional, TypedDict


MessageType = Literal["TEXT", "FILE", "TEXT_WITH_FILE", "SYSTEM", "MEETING"]

TEXT_TYPES = ("TEXT", "TEXT_WITH_FILE")
FILE_TYPES = ("FILE", "TEXT_WITH_FILE")


class MessageFile(TypedDict, total=False):
    url: str
    file_name: str
    file_size: int
    mime_type: str
    thumbnail_url: Optional[str]


class MeetingInfo(TypedDict, total=False):
    provider: Literal["ZOOM"]
    meeting_id: str
    meeting_link: str
    recording_link: Optional[str]
    scheduled_at: Optional[datetime]


class SeenReceipt(TypedDict):
    user_id: str
    seen_at: datetime


class DeliveryReceipt(TypedDict):
    user_id: str
    delivered_at: datetime


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    sender_id: str
    type: MessageType
    text: Optional[str]
    files: List[MessageFile]
    meeting: Optional[MeetingInfo]
    # receipts, at most one per user
    seen_by: List[SeenReceipt]
    delivered_to: List[DeliveryReceipt]
    # weak reference to a message in the same conversation
    reply_to: Optional[str]
    is_edited: bool
    edited_at: Optional[datetime]
    is_deleted: bool
    deleted_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
