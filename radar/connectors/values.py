"""Coercion helpers for loosely-typed source configs and provider JSON."""

from __future__ import annotations

from typing import Any, Dict, List, Optional


def pick(config: Dict[str, Any], *keys: str) -> Any:
    """Return the first non-None value among keys (snake_case and camelCase aliases)."""
    for key in keys:
        value = config.get(key)
        if value is not None:
            return value
    return None


def as_str(value: Any) -> Optional[str]:
    """Return a stripped non-empty string, or None."""
    if isinstance(value, str):
        value = value.strip()
        return value or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def as_number(value: Any) -> Optional[float]:
    """Parse ints, floats and numeric strings; bools and junk give None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value == value else None
    if isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
        return number if number == number else None
    return None


def as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    return default


def as_str_list(value: Any) -> List[str]:
    """Accept a list of strings or a single comma-separated string."""
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple)):
        return []
    out: List[str] = []
    for entry in value:
        text = as_str(entry)
        if text:
            out.append(text)
    return out


def clamp(value: Any, minimum: float, maximum: float, default: float) -> float:
    """Clamp a numeric config knob into [minimum, maximum]; non-numbers use default."""
    number = as_number(value)
    if number is None:
        return default
    return max(minimum, min(maximum, number))


def clamp_int(value: Any, minimum: int, maximum: int, default: int) -> int:
    return int(clamp(value, minimum, maximum, default))
