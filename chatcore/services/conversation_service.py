"""
Conversation lifecycle: creation, lookup, group mutation and read-marking.

Every mutation is persisted before any realtime event goes out, and a
failed publish never undoes the write. Besides the atomic unread counters
nothing here takes a lock: concurrent renames or participant edits on the
same conversation are last-writer-wins.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from pymongo.errors import DuplicateKeyError

from chatcore.errors import ForbiddenError, NotFoundError, ValidationError
from chatcore.models.conversation import GROUP, PRIVATE
from chatcore.repositories.conversation_repository import ConversationRepository
from chatcore.repositories.message_repository import MessageRepository
from chatcore.repositories.user_repository import UserRepository
from chatcore.services.read_state import ReadStateTracker
from chatcore.utils.realtime_bus import publish_safely
from chatcore.utils.websocket_manager import conversation_room, user_room


logger = logging.getLogger(__name__)

MIN_GROUP_SIZE = 3


def normalize_participants(requester_id: str, participant_ids: Iterable[str]) -> List[str]:
    """Deduplicate, keep first-seen order, and make sure the requester is in."""
    ordered: List[str] = []
    for pid in [requester_id, *participant_ids]:
        if not isinstance(pid, str) or not pid:
            raise ValidationError("Participant ids must be non-empty strings")
        # ids become keys of unread_counts
        if "." in pid or pid.startswith("$"):
            raise ValidationError(f"Invalid participant id: {pid!r}")
        if pid not in ordered:
            ordered.append(pid)
    return ordered


def private_pair_key(participants: Iterable[str]) -> str:
    return ":".join(sorted(participants))


def validate_new_conversation(
    conversation_type: str,
    participants: List[str],
    name: Optional[str],
    admin_ids: Optional[List[str]],
) -> None:
    if conversation_type == PRIVATE:
        if len(participants) != 2:
            raise ValidationError("Private conversation must have exactly 2 participants")
        return
    if conversation_type != GROUP:
        raise ValidationError(f"Unknown conversation type: {conversation_type!r}")
    if not name or not name.strip():
        raise ValidationError("Group conversation must have a name")
    if len(participants) < MIN_GROUP_SIZE:
        raise ValidationError(f"Group must have at least {MIN_GROUP_SIZE} participants")
    if admin_ids is not None:
        _check_admins_are_participants(admin_ids, participants)


def _check_admins_are_participants(admin_ids: List[str], participants: List[str]) -> None:
    outsiders = [a for a in admin_ids if a not in participants]
    if outsiders:
        raise ValidationError(
            "Admins must be participants of the group",
            details={"admin_ids": outsiders},
        )


class ConversationService:

    def __init__(
        self,
        conversation_repo: ConversationRepository,
        read_state: ReadStateTracker,
        bus,
        message_repo: Optional[MessageRepository] = None,
        user_repo: Optional[UserRepository] = None,
    ) -> None:
        self._conversation_repo = conversation_repo
        self._read_state = read_state
        self._bus = bus
        self._message_repo = message_repo
        self._user_repo = user_repo

    async def create_conversation(
        self,
        requester_id: str,
        conversation_type: str,
        participant_ids: Iterable[str],
        name: Optional[str] = None,
        avatar: Optional[str] = None,
        admin_ids: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        participants = normalize_participants(requester_id, participant_ids)
        if admin_ids is not None:
            admin_ids = list(dict.fromkeys(admin_ids))
        validate_new_conversation(conversation_type, participants, name, admin_ids)

        doc: Dict[str, Any] = {
            "type": conversation_type,
            "participant_ids": participants,
            "last_message_id": None,
            "unread_counts": {pid: 0 for pid in participants},
        }

        if conversation_type == PRIVATE:
            pair_key = private_pair_key(participants)
            existing = await self._conversation_repo.find_private(pair_key)
            if existing:
                return existing
            doc["pair_key"] = pair_key
            try:
                created = await self._conversation_repo.insert(doc)
            except DuplicateKeyError:
                # a concurrent request created the same pair first
                existing = await self._conversation_repo.find_private(pair_key)
                if existing is None:
                    raise
                return existing
            logger.info("Created private conversation %s", created["_id"])
            return created

        doc["name"] = name.strip()
        doc["avatar"] = avatar
        doc["admin_ids"] = admin_ids if admin_ids is not None else [requester_id]
        created = await self._conversation_repo.insert(doc)
        logger.info("Created group conversation %s with %d participants", created["_id"], len(participants))
        return created

    async def get_user_conversations(self, user_id: str) -> List[Dict[str, Any]]:
        conversations = await self._conversation_repo.list_for_user(user_id)
        return await self._annotate(conversations, user_id)

    async def get_conversation_by_id(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        conversation = await self._get_for_member(conversation_id, user_id)
        annotated = await self._annotate([conversation], user_id)
        return annotated[0]

    async def update_group_conversation(
        self,
        conversation_id: str,
        user_id: str,
        name: Optional[str] = None,
        avatar: Optional[str] = None,
        admin_ids: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        conversation = await self._get_for_member(conversation_id, user_id)
        self._require_group_admin(conversation, user_id, "Only admins can update group")

        fields: Dict[str, Any] = {}
        if name is not None:
            if not name.strip():
                raise ValidationError("Group conversation must have a name")
            fields["name"] = name.strip()
        if avatar is not None:
            fields["avatar"] = avatar
        if admin_ids is not None:
            admin_ids = list(dict.fromkeys(admin_ids))
            _check_admins_are_participants(admin_ids, conversation["participant_ids"])
            fields["admin_ids"] = admin_ids
        if not fields:
            return conversation

        updated = await self._conversation_repo.update_fields(conversation_id, fields)
        if updated is None:
            raise NotFoundError("Group conversation not found")
        # participants pick the change up on their next fetch, no event here
        return updated

    async def add_participants_to_group(
        self,
        conversation_id: str,
        user_id: str,
        new_participant_ids: Iterable[str],
    ) -> Dict[str, Any]:
        conversation = await self._get_for_member(conversation_id, user_id)
        self._require_group_admin(conversation, user_id, "Only admins can add participants")

        existing = set(conversation["participant_ids"])
        to_add = [pid for pid in normalize_participants(user_id, new_participant_ids) if pid not in existing]
        if not to_add:
            return conversation

        updated = await self._conversation_repo.add_participants(conversation_id, to_add)
        if updated is None:
            raise NotFoundError("Group conversation not found")
        logger.info("Added %d participants to %s", len(to_add), conversation_id)

        for pid in to_add:
            await self._notify(
                user_room(pid),
                "added_to_group",
                {"conversation_id": conversation_id, "conversation": updated},
            )
        return updated

    async def remove_participant_from_group(
        self,
        conversation_id: str,
        user_id: str,
        target_id: str,
    ) -> Dict[str, Any]:
        conversation = await self._get_for_member(conversation_id, user_id)
        if conversation.get("type") != GROUP:
            raise ForbiddenError("Only group conversations have removable participants")

        is_admin = user_id in (conversation.get("admin_ids") or [])
        is_self = user_id == target_id
        if not is_admin and not is_self:
            raise ForbiddenError("Cannot remove other participants")

        # the last admin may leave; no replacement is promoted
        updated = await self._conversation_repo.remove_participant(conversation_id, target_id)
        if updated is None:
            raise NotFoundError("Group conversation not found")
        logger.info("Removed participant %s from %s", target_id, conversation_id)

        await self._notify(user_room(target_id), "removed_from_group", {"conversation_id": conversation_id})
        return updated

    async def mark_conversation_as_read(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        matched = await self._read_state.reset_unread(conversation_id, user_id)
        if not matched:
            raise NotFoundError("Conversation not found")
        await self._notify(
            conversation_room(conversation_id),
            "conversation_read",
            {"conversation_id": conversation_id, "user_id": user_id},
        )
        return {"success": True}

    async def _get_for_member(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        conversation = await self._conversation_repo.find_for_member(conversation_id, user_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        return conversation

    def _require_group_admin(self, conversation: Dict[str, Any], user_id: str, message: str) -> None:
        if conversation.get("type") != GROUP:
            raise ForbiddenError("Operation is only allowed on group conversations")
        if user_id not in (conversation.get("admin_ids") or []):
            raise ForbiddenError(message)

    async def _annotate(self, conversations: List[Dict[str, Any]], user_id: str) -> List[Dict[str, Any]]:
        profiles: Dict[str, Any] = {}
        if self._user_repo is not None:
            all_ids = {pid for conv in conversations for pid in conv.get("participant_ids", [])}
            profiles = await self._user_repo.get_profiles(all_ids)

        last_messages: Dict[str, Any] = {}
        if self._message_repo is not None:
            message_ids = [conv["last_message_id"] for conv in conversations if conv.get("last_message_id")]
            last_messages = await self._message_repo.get_many(message_ids)

        for conv in conversations:
            conv["unread_count"] = (conv.get("unread_counts") or {}).get(user_id, 0)
            conv["participants"] = [
                profiles.get(pid, {"id": pid, "name": None, "email": None, "avatar": None})
                for pid in conv.get("participant_ids", [])
            ]
            conv["last_message"] = last_messages.get(conv.get("last_message_id"))
        return conversations

    async def _notify(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        await publish_safely(self._bus, room, event, payload)
