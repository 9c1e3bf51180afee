from typing import Dict, Iterable

from motor.motor_asyncio import AsyncIOMotorDatabase

from chatcore.models.user import UserProfile
from chatcore.utils.object_ids import to_object_id


_PROFILE_PROJECTION = {"name": 1, "email": 1, "avatar": 1}


class UserRepository:
    """Read-only view of the users collection owned by the identity service."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")

    async def get_profiles(self, user_ids: Iterable[str]) -> Dict[str, UserProfile]:
        oids = [oid for oid in (to_object_id(u) for u in set(user_ids)) if oid is not None]
        if not oids:
            return {}
        cursor = self._collection.find({"_id": {"$in": oids}}, _PROFILE_PROJECTION)
        docs = await cursor.to_list(length=len(oids))
        profiles: Dict[str, UserProfile] = {}
        for doc in docs:
            user_id = str(doc["_id"])
            profiles[user_id] = {
                "id": user_id,
                "name": doc.get("name"),
                "email": doc.get("email"),
                "avatar": doc.get("avatar"),
            }
        return profiles
