from datetime import datetime
from typing import Optional
from bson import ObjectId
from bson.errors import InvalidId


def object_id_to_str(obj_id) -> str:
    """Convert ObjectId to string."""
    if isinstance(obj_id, ObjectId):
        return str(obj_id)
    return obj_id


def parse_object_id(value) -> Optional[ObjectId]:
    """Parse a string into an ObjectId. Returns None if it is not one."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def get_current_timestamp() -> datetime:
    """Get current UTC timestamp."""
    return datetime.utcnow()
