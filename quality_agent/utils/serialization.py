"""
JSON conversion for pipeline dataclasses
"""

from dataclasses import fields, is_dataclass
from datetime import date, datetime
from enum import Enum
from uuid import UUID


def to_jsonable(obj):
    """Recursively convert dataclasses, enums, datetimes and UUIDs into JSON-safe values"""
    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if hasattr(obj, 'to_dict'):
        return to_jsonable(obj.to_dict())
    if is_dataclass(obj):
        return {f.name: to_jsonable(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, dict):
        return {str(to_jsonable(k)): to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [to_jsonable(item) for item in obj]
    return str(obj)
