"""
Shared helpers used across the protocol adapter
"""
import random
import string
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional


def safe_get_nested(data: Any, *keys, default=None):
    """Walk dicts and lists by key / index, returning default on any miss

    Args:
        data: Structure to search
        *keys: Dict keys or list indexes applied in order
        default: Value returned when a step is missing

    Returns:
        The nested value or default
    """
    current = data
    for key in keys:
        if isinstance(key, int):
            if isinstance(current, list) and -len(current) <= key < len(current):
                current = current[key]
                continue
            return default
        if isinstance(current, dict) and key in current:
            current = current[key]
        else:
            return default
    return current


def unset_object_keys(obj: Dict[str, Any], keys: Iterable[str]) -> Dict[str, Any]:
    """Shallow copy of obj without the given keys"""
    drop = set(keys)
    return {k: v for k, v in obj.items() if k not in drop}


def title_case(value: Optional[str]) -> str:
    """'under_review' -> 'Under Review'"""
    if not value:
        return ""
    words = value.replace("_", " ").replace("-", " ").split()
    return " ".join(word[:1].upper() + word[1:].lower() for word in words)


def generate_random_string(length: int = 8) -> str:
    """Random alphanumeric string"""
    alphabet = string.ascii_letters + string.digits
    return "".join(random.choices(alphabet, k=length))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso8601(value: Any) -> Optional[str]:
    """Normalize a datetime or ISO string to UTC ISO-8601 with millisecond 'Z' suffix"""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    elif isinstance(value, datetime):
        parsed = value
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    parsed = parsed.astimezone(timezone.utc)
    return parsed.strftime("%Y-%m-%dT%H:%M:%S.") + f"{parsed.microsecond // 1000:03d}Z"
