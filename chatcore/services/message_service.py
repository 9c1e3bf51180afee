import logging
from typing import Any, Dict, List, Optional, Tuple

from chatcore.errors import ForbiddenError, NotFoundError, ValidationError
from chatcore.models.message import FILE_TYPES, TEXT_TYPES
from chatcore.repositories.conversation_repository import ConversationRepository
from chatcore.repositories.message_repository import MessageRepository
from chatcore.services.read_state import ReadStateTracker
from chatcore.utils.realtime_bus import publish_safely
from chatcore.utils.websocket_manager import conversation_room, user_room


logger = logging.getLogger(__name__)

MESSAGE_TYPES = ("TEXT", "FILE", "TEXT_WITH_FILE", "SYSTEM", "MEETING")
MEETING_PROVIDERS = ("ZOOM",)

_FILE_REQUIRED = ("url", "file_name", "file_size", "mime_type")
_MEETING_REQUIRED = ("provider", "meeting_id", "meeting_link")


def validate_message_content(
    message_type: str,
    text: Optional[str] = None,
    files: Optional[List[Dict[str, Any]]] = None,
    meeting: Optional[Dict[str, Any]] = None,
) -> Tuple[Optional[str], List[Dict[str, Any]], Optional[Dict[str, Any]]]:
    """Check content against the message type and return what gets stored.

    Text survives only on TEXT and TEXT_WITH_FILE, a meeting only on MEETING.
    """
    if message_type not in MESSAGE_TYPES:
        raise ValidationError(f"Unknown message type: {message_type!r}")

    if message_type in TEXT_TYPES:
        text = (text or "").strip()
        if not text:
            raise ValidationError("Message text cannot be empty")
    else:
        text = None

    files = list(files or [])
    if message_type in FILE_TYPES and not files:
        raise ValidationError("File message must include at least one file")
    for f in files:
        missing = [k for k in _FILE_REQUIRED if f.get(k) in (None, "")]
        if missing:
            raise ValidationError("File descriptor is incomplete", details={"missing": missing})

    if message_type == "MEETING":
        if not meeting:
            raise ValidationError("Meeting message must include meeting details")
        missing = [k for k in _MEETING_REQUIRED if not meeting.get(k)]
        if missing:
            raise ValidationError("Meeting details are incomplete", details={"missing": missing})
        if meeting["provider"] not in MEETING_PROVIDERS:
            raise ValidationError(f"Unsupported meeting provider: {meeting['provider']!r}")
    else:
        meeting = None

    return text, files, meeting


class MessageService:

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        read_state: ReadStateTracker,
        bus,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._read_state = read_state
        self._bus = bus

    async def send_message(
        self,
        conversation_id: str,
        sender_id: str,
        message_type: str = "TEXT",
        text: Optional[str] = None,
        files: Optional[List[Dict[str, Any]]] = None,
        meeting: Optional[Dict[str, Any]] = None,
        reply_to: Optional[str] = None,
    ) -> Dict[str, Any]:
        convo = await self._get_for_member(conversation_id, sender_id)
        text, files, meeting = validate_message_content(message_type, text, files, meeting)

        if reply_to:
            original = await self._message_repo.get(reply_to)
            if original is None or original["conversation_id"] != conversation_id:
                raise ValidationError("Reply target must be a message in the same conversation")

        saved = await self._message_repo.insert({
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "type": message_type,
            "text": text,
            "files": files,
            "meeting": meeting,
            "reply_to": reply_to,
        })
        await self._conversation_repo.set_last_message(conversation_id, saved["_id"])
        await self._read_state.increment_unread(conversation_id, convo["participant_ids"], sender_id)

        for pid in convo["participant_ids"]:
            if pid == sender_id:
                continue
            await publish_safely(
                self._bus,
                user_room(pid),
                "new_message",
                {"conversation_id": conversation_id, "message": saved},
            )
        return saved

    async def list_messages(
        self,
        conversation_id: str,
        user_id: str,
        limit: int = 50,
        cursor: Optional[str] = None,
    ):
        await self._get_for_member(conversation_id, user_id)
        return await self._message_repo.list_by_conversation(conversation_id, limit=limit, cursor=cursor)

    async def edit_message(self, message_id: str, user_id: str, text: str) -> Dict[str, Any]:
        message = await self._get_own_message(message_id, user_id)
        if message["type"] not in TEXT_TYPES:
            raise ValidationError("Only text messages can be edited")
        text = (text or "").strip()
        if not text:
            raise ValidationError("Message text cannot be empty")

        updated = await self._message_repo.update_text(message_id, text)
        if updated is None:
            # same text, nothing to stamp
            return message
        await publish_safely(
            self._bus,
            conversation_room(updated["conversation_id"]),
            "message_updated",
            {"conversation_id": updated["conversation_id"], "message": updated},
        )
        return updated

    async def delete_message(self, message_id: str, user_id: str) -> Dict[str, Any]:
        await self._get_own_message(message_id, user_id)
        deleted = await self._message_repo.soft_delete(message_id)
        if deleted is None:
            raise NotFoundError("Message not found")
        logger.info("Message %s deleted by %s", message_id, user_id)
        await publish_safely(
            self._bus,
            conversation_room(deleted["conversation_id"]),
            "message_deleted",
            {"conversation_id": deleted["conversation_id"], "message_id": message_id},
        )
        return deleted

    async def mark_delivered(self, message_id: str, user_id: str) -> Dict[str, Any]:
        return await self._record_receipt(message_id, user_id, "delivered_to", "message_delivered")

    async def mark_seen(self, message_id: str, user_id: str) -> Dict[str, Any]:
        return await self._record_receipt(message_id, user_id, "seen_by", "message_seen")

    async def _record_receipt(self, message_id: str, user_id: str, field: str, event: str) -> Dict[str, Any]:
        message = await self._message_repo.get(message_id)
        if message is None:
            raise NotFoundError("Message not found")
        await self._get_for_member(message["conversation_id"], user_id)
        if message["sender_id"] == user_id:
            return {"success": True, "recorded": False}

        recorded = await self._message_repo.add_receipt(message_id, field, user_id)
        if recorded:
            await publish_safely(
                self._bus,
                user_room(message["sender_id"]),
                event,
                {"conversation_id": message["conversation_id"], "message_id": message_id, "user_id": user_id},
            )
        return {"success": True, "recorded": recorded}

    async def _get_own_message(self, message_id: str, user_id: str) -> Dict[str, Any]:
        message = await self._message_repo.get(message_id)
        if message is None or message.get("is_deleted"):
            raise NotFoundError("Message not found")
        await self._get_for_member(message["conversation_id"], user_id)
        if message["sender_id"] != user_id:
            raise ForbiddenError("Only the sender can change this message")
        return message

    async def _get_for_member(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        convo = await self._conversation_repo.find_for_member(conversation_id, user_id)
        if convo is None:
            raise NotFoundError("Conversation not found")
        return convo
