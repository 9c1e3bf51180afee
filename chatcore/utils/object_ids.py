from typing import Any, Dict, Iterable, Optional

from bson import ObjectId


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse an id coming from a caller; anything malformed resolves to None."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def stringify(doc: Optional[Dict[str, Any]], fields: Iterable[str] = ("_id",)) -> Optional[Dict[str, Any]]:
    # normalize ObjectId fields to str for the API layer
    if doc is None:
        return None
    for field in fields:
        value = doc.get(field)
        if isinstance(value, ObjectId):
            doc[field] = str(value)
    return doc
