from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from chatcore.config import config
from chatcore.database.connection import mongo_db_dependency
from chatcore.repositories.conversation_repository import ConversationRepository
from chatcore.repositories.message_repository import MessageRepository
from chatcore.repositories.user_repository import UserRepository
from chatcore.routers.messages import get_message_service
from chatcore.schemas.conversation import ConversationCreate, GroupUpdate, ParticipantsAdd
from chatcore.schemas.message import MessageCreate
from chatcore.services.conversation_service import ConversationService
from chatcore.services.message_service import MessageService
from chatcore.services.read_state import ReadStateTracker
from chatcore.utils.dependencies import get_current_user
from chatcore.utils.realtime_bus import get_bus


router = APIRouter(prefix="/conversations", tags=["conversations"])


def get_conversation_service(db = Depends(mongo_db_dependency), bus = Depends(get_bus)) -> ConversationService:
    return ConversationService(
        ConversationRepository(db),
        ReadStateTracker(db),
        bus,
        message_repo=MessageRepository(db),
        user_repo=UserRepository(db),
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_conversation(body: ConversationCreate, current_user: dict = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    return await service.create_conversation(
        current_user["_id"],
        body.type,
        body.participant_ids,
        name=body.name,
        avatar=body.avatar,
        admin_ids=body.admin_ids,
    )


@router.get("")
async def list_conversations(current_user: dict = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    items = await service.get_user_conversations(current_user["_id"])
    return {"items": items}


@router.get("/{conversation_id}")
async def get_conversation(conversation_id: str, current_user: dict = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    return await service.get_conversation_by_id(conversation_id, current_user["_id"])


@router.patch("/{conversation_id}")
async def update_group(conversation_id: str, body: GroupUpdate, current_user: dict = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    return await service.update_group_conversation(
        conversation_id,
        current_user["_id"],
        name=body.name,
        avatar=body.avatar,
        admin_ids=body.admin_ids,
    )


@router.post("/{conversation_id}/participants")
async def add_participants(conversation_id: str, body: ParticipantsAdd, current_user: dict = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    return await service.add_participants_to_group(conversation_id, current_user["_id"], body.participant_ids)


@router.delete("/{conversation_id}/participants/{participant_id}")
async def remove_participant(conversation_id: str, participant_id: str, current_user: dict = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    return await service.remove_participant_from_group(conversation_id, current_user["_id"], participant_id)


@router.post("/{conversation_id}/read")
async def mark_read(conversation_id: str, current_user: dict = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    return await service.mark_conversation_as_read(conversation_id, current_user["_id"])


@router.get("/{conversation_id}/messages")
async def list_messages(conversation_id: str, limit: int = Query(config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE), cursor: Optional[str] = None, current_user: dict = Depends(get_current_user), service: MessageService = Depends(get_message_service)):
    messages, next_cursor = await service.list_messages(conversation_id, current_user["_id"], limit=limit, cursor=cursor)
    return {"items": messages, "next_cursor": next_cursor}


@router.post("/{conversation_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_message(conversation_id: str, body: MessageCreate, current_user: dict = Depends(get_current_user), service: MessageService = Depends(get_message_service)):
    return await service.send_message(
        conversation_id,
        current_user["_id"],
        message_type=body.type,
        text=body.text,
        files=[f.model_dump() for f in body.files],
        meeting=body.meeting.model_dump() if body.meeting else None,
        reply_to=body.reply_to,
    )
