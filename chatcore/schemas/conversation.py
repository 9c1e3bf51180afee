from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class ConversationCreate(BaseModel):

    type: Literal["PRIVATE", "GROUP"]
    participant_ids: List[str] = Field(min_length=1)
    name: Optional[str] = None
    avatar: Optional[str] = None
    admin_ids: Optional[List[str]] = None


class GroupUpdate(BaseModel):

    name: Optional[str] = None
    avatar: Optional[str] = None
    admin_ids: Optional[List[str]] = None


class ParticipantsAdd(BaseModel):

    participant_ids: List[str] = Field(min_length=1)
