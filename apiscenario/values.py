# apiscenario/values.py
"""
Closed value model shared by captures, variables, interpolation and checks.

Every dynamic value that flows through the engine is one of:

    None | bool | int | float | str | list | dict[str, ...]

`normalize()` folds anything else (tuples, pydantic models, dataclasses,
bytes, decimals, dates) into that set so the rest of the code can dispatch
on shape with a plain isinstance ladder.
"""

from __future__ import annotations

import dataclasses
import json
import math
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Union

JSONValue = Union[None, bool, int, float, str, List[Any], Dict[str, Any]]


def normalize(value: Any) -> JSONValue:
    """Convert an arbitrary value into the closed JSON value set"""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Mapping):
        return {str(k): normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [normalize(v) for v in value]
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if hasattr(value, "model_dump"):
        return normalize(value.model_dump())
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return normalize(dataclasses.asdict(value))
    return str(value)


def to_text(value: Any) -> str:
    """String form used for interpolation and string-form comparison"""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (int, str)):
        return str(value)
    if isinstance(value, (list, dict)):
        return json.dumps(normalize(value), separators=(",", ":"), ensure_ascii=False)
    return to_text(normalize(value))


def is_numeric(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def to_float(value: Any) -> float:
    return float(value) if is_numeric(value) else 0.0


def is_truthy(value: Any) -> bool:
    """Truthiness rule for step conditions"""
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return value.strip() not in ("", "false")
    return True


def json_safe(value: Any) -> Any:
    """Best-effort conversion for report serialization"""
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return normalize(value)
