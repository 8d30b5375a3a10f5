"""JSON helpers for audit images and history snapshots."""
import enum
import json
import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from typing import Any


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _default_handler(obj: Any) -> Any:
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        # Keep precision: Decimal -> string
        return str(obj)
    if isinstance(obj, uuid.UUID):
        return str(obj)
    if isinstance(obj, enum.Enum):
        return obj.value
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def to_json_safe(value: Any) -> Any:
    """
    Convert a row image (or any nested structure) into plain JSON types.

    Decimals become strings so monetary values survive without float drift.
    """
    if value is None:
        return None
    return json.loads(json.dumps(value, default=_default_handler))


def as_utc(value):
    """Datetime in UTC; naive values read back from the database are UTC."""
    if not isinstance(value, datetime):
        return value
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def as_uuid(value):
    """Coerce a UUID-ish value; None passes through. Raises ValueError."""
    if value is None or isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))
