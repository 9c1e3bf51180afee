from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class MessageFileIn(BaseModel):

    url: str
    file_name: str
    file_size: int = Field(ge=0)
    mime_type: str
    thumbnail_url: Optional[str] = None


class MeetingIn(BaseModel):

    provider: Literal["ZOOM"] = "ZOOM"
    meeting_id: str
    meeting_link: str
    recording_link: Optional[str] = None
    scheduled_at: Optional[datetime] = None


class MessageCreate(BaseModel):

    type: Literal["TEXT", "FILE", "TEXT_WITH_FILE", "SYSTEM", "MEETING"] = "TEXT"
    text: Optional[str] = None
    files: List[MessageFileIn] = Field(default_factory=list)
    meeting: Optional[MeetingIn] = None
    reply_to: Optional[str] = None


class MessageEdit(BaseModel):

    text: str
