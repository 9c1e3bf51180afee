from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from chatcore.models.conversation import ConversationDocument
from chatcore.utils.object_ids import stringify, to_object_id


_ID_FIELDS = ("_id", "last_message_id")


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("participant_ids", ASCENDING), ("updated_at", DESCENDING)])
        await self.collection.create_index([("updated_at", DESCENDING)])
        await self.collection.create_index([("type", ASCENDING)])
        # one PRIVATE conversation per unordered pair; groups carry no pair_key
        await self.collection.create_index([("pair_key", ASCENDING)], unique=True, sparse=True)

    async def insert(self, doc: Dict[str, Any]) -> ConversationDocument:
        now = datetime.now(timezone.utc)
        doc.setdefault("created_at", now)
        doc.setdefault("updated_at", now)
        result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc

    async def find_private(self, pair_key: str) -> Optional[ConversationDocument]:
        doc = await self.collection.find_one({"type": "PRIVATE", "pair_key": pair_key})
        return stringify(doc, _ID_FIELDS)

    async def find_for_member(self, conversation_id: str, user_id: str) -> Optional[ConversationDocument]:
        oid = to_object_id(conversation_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid, "participant_ids": user_id})
        return stringify(doc, _ID_FIELDS)

    async def list_for_user(self, user_id: str) -> List[ConversationDocument]:
        cursor = self.collection.find({"participant_ids": user_id}).sort(
            [("updated_at", DESCENDING), ("_id", DESCENDING)]
        )
        items = await cursor.to_list(length=None)
        for it in items:
            stringify(it, _ID_FIELDS)
        return items

    async def update_fields(self, conversation_id: str, fields: Dict[str, Any]) -> Optional[ConversationDocument]:
        update = dict(fields)
        update["updated_at"] = datetime.now(timezone.utc)
        return await self._find_and_update(conversation_id, {"$set": update})

    async def add_participants(self, conversation_id: str, user_ids: List[str]) -> Optional[ConversationDocument]:
        oid = to_object_id(conversation_id)
        if oid is None:
            return None
        for uid in user_ids:
            # only a real join zeroes the counter; a repeated add leaves it alone
            await self.collection.update_one(
                {"_id": oid, "participant_ids": {"$ne": uid}},
                {
                    "$addToSet": {"participant_ids": uid},
                    "$set": {f"unread_counts.{uid}": 0, "updated_at": datetime.now(timezone.utc)},
                },
            )
        doc = await self.collection.find_one({"_id": oid})
        return stringify(doc, _ID_FIELDS)

    async def remove_participant(self, conversation_id: str, user_id: str) -> Optional[ConversationDocument]:
        return await self._find_and_update(
            conversation_id,
            {
                "$pull": {"participant_ids": user_id, "admin_ids": user_id},
                "$unset": {f"unread_counts.{user_id}": ""},
                "$set": {"updated_at": datetime.now(timezone.utc)},
            },
        )

    async def set_last_message(self, conversation_id: str, message_id: str) -> None:
        oid = to_object_id(conversation_id)
        if oid is None:
            return
        await self.collection.update_one(
            {"_id": oid},
            {
                "$set": {
                    "last_message_id": to_object_id(message_id),
                    "updated_at": datetime.now(timezone.utc),
                }
            },
        )

    async def _find_and_update(self, conversation_id: str, update: Dict[str, Any]) -> Optional[ConversationDocument]:
        oid = to_object_id(conversation_id)
        if oid is None:
            return None
        doc = await self.collection.find_one_and_update(
            {"_id": oid},
            update,
            return_document=ReturnDocument.AFTER,
        )
        return stringify(doc, _ID_FIELDS)
