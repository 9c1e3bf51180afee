from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from chatcore.models.message import MessageDocument
from chatcore.utils.object_ids import stringify, to_object_id


_ID_FIELDS = ("_id", "conversation_id", "reply_to")

# receipt list -> timestamp key inside each entry
RECEIPT_FIELDS = {
    "seen_by": "seen_at",
    "delivered_to": "delivered_at",
}


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("created_at", DESCENDING), ("_id", DESCENDING)])
        await self.collection.create_index([("sender_id", ASCENDING)])
        await self.collection.create_index([("seen_by.user_id", ASCENDING)])
        await self.collection.create_index([("delivered_to.user_id", ASCENDING)])
        await self.collection.create_index([("reply_to", ASCENDING)])

    async def insert(self, doc: Dict[str, Any]) -> MessageDocument:
        now = datetime.now(timezone.utc)
        stored = dict(doc)
        stored["conversation_id"] = to_object_id(doc["conversation_id"])
        if doc.get("reply_to"):
            stored["reply_to"] = to_object_id(doc["reply_to"])
        stored.setdefault("seen_by", [])
        stored.setdefault("delivered_to", [])
        stored.setdefault("is_edited", False)
        stored.setdefault("edited_at", None)
        stored.setdefault("is_deleted", False)
        stored.setdefault("deleted_at", None)
        stored["created_at"] = now
        stored["updated_at"] = now
        result = await self.collection.insert_one(stored)
        stored["_id"] = result.inserted_id
        return stringify(stored, _ID_FIELDS)

    async def get(self, message_id: str) -> Optional[MessageDocument]:
        oid = to_object_id(message_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid})
        return stringify(doc, _ID_FIELDS)

    async def get_many(self, message_ids: Iterable[str]) -> Dict[str, MessageDocument]:
        oids = [oid for oid in (to_object_id(m) for m in message_ids) if oid is not None]
        if not oids:
            return {}
        cursor = self.collection.find({"_id": {"$in": oids}})
        items = await cursor.to_list(length=len(oids))
        return {it["_id"]: it for it in (stringify(doc, _ID_FIELDS) for doc in items)}

    async def list_by_conversation(
        self,
        conversation_id: str,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> Tuple[List[MessageDocument], Optional[str]]:
        query: Dict[str, Any] = {"conversation_id": to_object_id(conversation_id)}
        sort = [("created_at", DESCENDING), ("_id", DESCENDING)]
        if cursor:
            # cursor format: ts_ms:oid
            ts, oid = self._parse_cursor(cursor)
            if ts is not None:
                query["$or"] = [
                    {"created_at": {"$lt": ts}},
                    {"created_at": ts, "_id": {"$lt": oid}},
                ]
        cur = self.collection.find(query).sort(sort).limit(limit)
        items = await cur.to_list(length=limit)
        for it in items:
            stringify(it, _ID_FIELDS)
        next_cursor = None
        if len(items) == limit:
            last = items[-1]
            last_ts = int(last["created_at"].timestamp() * 1000)
            next_cursor = f"{last_ts}:{last['_id']}"
        # chronological order for the UI
        return list(reversed(items)), next_cursor

    async def update_text(self, message_id: str, text: str) -> Optional[MessageDocument]:
        """Apply an edit; returns None when nothing changed."""
        oid = to_object_id(message_id)
        if oid is None:
            return None
        now = datetime.now(timezone.utc)
        doc = await self.collection.find_one_and_update(
            {"_id": oid, "is_deleted": False, "text": {"$ne": text}},
            {"$set": {"text": text, "is_edited": True, "edited_at": now, "updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        return stringify(doc, _ID_FIELDS)

    async def soft_delete(self, message_id: str) -> Optional[MessageDocument]:
        oid = to_object_id(message_id)
        if oid is None:
            return None
        now = datetime.now(timezone.utc)
        doc = await self.collection.find_one_and_update(
            {"_id": oid},
            {"$set": {"is_deleted": True, "deleted_at": now, "updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        return stringify(doc, _ID_FIELDS)

    async def add_receipt(self, message_id: str, field: str, user_id: str) -> bool:
        """Record a seen/delivered receipt; a repeat for the same user overwrites its timestamp."""
        stamp = RECEIPT_FIELDS[field]
        oid = to_object_id(message_id)
        if oid is None:
            return False
        now = datetime.now(timezone.utc)
        result = await self.collection.update_one(
            {"_id": oid, f"{field}.user_id": user_id},
            {"$set": {f"{field}.$.{stamp}": now}},
        )
        if result.matched_count:
            return True
        result = await self.collection.update_one(
            {"_id": oid, f"{field}.user_id": {"$ne": user_id}},
            {"$push": {field: {"user_id": user_id, stamp: now}}},
        )
        if result.matched_count:
            return True
        # lost a race with a concurrent first receipt for the same user
        result = await self.collection.update_one(
            {"_id": oid, f"{field}.user_id": user_id},
            {"$set": {f"{field}.$.{stamp}": now}},
        )
        return bool(result.matched_count)

    def _parse_cursor(self, cursor: str):
        try:
            ts_str, oid_hex = cursor.split(":", 1)
            ts = datetime.fromtimestamp(int(ts_str) / 1000.0, tz=timezone.utc)
        except ValueError:
            return None, None
        oid = to_object_id(oid_hex)
        if oid is None:
            return None, None
        return ts, oid
