"""
Core Utilities.

Shared utility functions used across the event core.
All modules should import utilities from this module.
"""

import json
from datetime import datetime, timezone
from typing import Any


def utc_now() -> datetime:
    """
    Return current UTC time as timezone-naive datetime.

    All datetime values in the application should be timezone-naive
    and assumed to be UTC. This ensures consistent behavior across
    the codebase and simplifies database storage.

    Returns:
        Current UTC time with tzinfo stripped
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def dump_json(value: Any) -> str:
    """Serialize a payload for storage. Datetimes and other objects fall back to str()."""
    return json.dumps(value, default=str)


def load_json(raw: str | bytes | None) -> Any:
    """
    Parse a stored payload.

    Raises:
        ValueError: If the payload is not valid JSON
    """
    if raw is None or raw == "":
        return None
    return json.loads(raw)


def error_message(exc: BaseException) -> str:
    """Human-readable message for an exception, falling back to its class name."""
    return str(exc) or type(exc).__name__
