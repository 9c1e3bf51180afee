"""
Unread-count bookkeeping.

Both operations are single atomic document updates and never read the
conversation first, so a reset racing an increment for the same user
cannot lose the increment.
"""
import logging
from datetime import datetime, timezone
from typing import Iterable

from motor.motor_asyncio import AsyncIOMotorDatabase

from chatcore.utils.object_ids import to_object_id


logger = logging.getLogger(__name__)


class ReadStateTracker:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def reset_unread(self, conversation_id: str, user_id: str) -> bool:
        """Zero ``user_id``'s counter; False when the user is not a participant."""
        oid = to_object_id(conversation_id)
        if oid is None:
            return False
        result = await self.collection.update_one(
            {"_id": oid, "participant_ids": user_id},
            {"$set": {f"unread_counts.{user_id}": 0, "updated_at": datetime.now(timezone.utc)}},
        )
        return bool(result.matched_count)

    async def increment_unread(self, conversation_id: str, participant_ids: Iterable[str], sender_id: str) -> None:
        targets = [pid for pid in dict.fromkeys(participant_ids) if pid != sender_id]
        if not targets:
            return
        oid = to_object_id(conversation_id)
        if oid is None:
            return
        await self.collection.update_one(
            {"_id": oid},
            {
                "$inc": {f"unread_counts.{pid}": 1 for pid in targets},
                "$set": {"updated_at": datetime.now(timezone.utc)},
            },
        )
        logger.debug("Incremented unread for %d participants in %s", len(targets), conversation_id)
