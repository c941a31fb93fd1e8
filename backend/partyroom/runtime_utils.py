from __future__ import annotations

import random
import re
import time
from typing import Any

from .runtime_constants import ANIMAL_AVATARS

_NESTED_PAYLOAD_KEYS = ("data", "payload")


def now_ms() -> int:
    return int(time.time() * 1000)


def random_avatar() -> str:
    return random.choice(ANIMAL_AVATARS)


def sanitize_room_id(raw: str | None, fallback: str) -> str:
    value = str(raw or "").strip()
    filtered = "".join(ch for ch in value if ch.isalnum() or ch in {"-", "_"})
    return filtered[:32] or fallback


def sanitize_nickname(raw: str | None, fallback: str) -> str:
    value = str(raw or "").strip()
    cleaned = re.sub(r"\s+", " ", value)[:32].strip()
    return cleaned or fallback


def parse_bool_flag(raw: str | None) -> bool:
    return str(raw or "") == "true"


def parse_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def parse_positive_int(value: Any) -> int | None:
    parsed = parse_int(value)
    if parsed is None or parsed <= 0:
        return None
    return parsed


def message_field(message: dict[str, Any], key: str) -> Any:
    """Look a field up on the frame itself, then inside a nested data/payload object."""
    if key in message:
        return message[key]
    for nested_key in _NESTED_PAYLOAD_KEYS:
        nested = message.get(nested_key)
        if isinstance(nested, dict) and key in nested:
            return nested[key]
    return None
