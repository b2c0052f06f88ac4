"""
Access helpers for provider payloads.
Stream events arrive as SDK objects in production and as plain dicts from
recorded fixtures; both are read the same way.
"""
from typing import Any


def get_field(obj: Any, name: str, default: Any = None) -> Any:
    """Attribute or key ``name`` of ``obj``, ``default`` when missing or None."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        value = obj.get(name)
    else:
        value = getattr(obj, name, None)
    return default if value is None else value


def get_path(obj: Any, *names: Any, default: Any = None) -> Any:
    """
    Nested lookup; integer parts index into sequences.

    Example:
        get_path(event, "item", "media", 0, "mime_type")
    """
    current = obj
    for name in names:
        if isinstance(name, int):
            if not isinstance(current, (list, tuple)) or len(current) <= name:
                return default
            current = current[name]
        else:
            current = get_field(current, name)
        if current is None:
            return default
    return current
