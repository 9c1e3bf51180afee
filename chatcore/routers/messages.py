from fastapi import APIRouter, Depends

from chatcore.database.connection import mongo_db_dependency
from chatcore.repositories.conversation_repository import ConversationRepository
from chatcore.repositories.message_repository import MessageRepository
from chatcore.schemas.message import MessageEdit
from chatcore.services.message_service import MessageService
from chatcore.services.read_state import ReadStateTracker
from chatcore.utils.dependencies import get_current_user
from chatcore.utils.realtime_bus import get_bus


router = APIRouter(prefix="/messages", tags=["messages"])


def get_message_service(db = Depends(mongo_db_dependency), bus = Depends(get_bus)) -> MessageService:
    return MessageService(MessageRepository(db), ConversationRepository(db), ReadStateTracker(db), bus)


@router.patch("/{message_id}")
async def edit_message(message_id: str, body: MessageEdit, current_user: dict = Depends(get_current_user), service: MessageService = Depends(get_message_service)):
    return await service.edit_message(message_id, current_user["_id"], body.text)


@router.delete("/{message_id}")
async def delete_message(message_id: str, current_user: dict = Depends(get_current_user), service: MessageService = Depends(get_message_service)):
    return await service.delete_message(message_id, current_user["_id"])


@router.post("/{message_id}/delivered")
async def mark_delivered(message_id: str, current_user: dict = Depends(get_current_user), service: MessageService = Depends(get_message_service)):
    return await service.mark_delivered(message_id, current_user["_id"])


@router.post("/{message_id}/seen")
async def mark_seen(message_id: str, current_user: dict = Depends(get_current_user), service: MessageService = Depends(get_message_service)):
    return await service.mark_seen(message_id, current_user["_id"])
