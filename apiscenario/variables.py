# apiscenario/variables.py
"""
Layered variable namespace and template interpolation.

Three scopes are kept per context:

- global: process/config-wide values (config variables, scenario env, builtins)
- local:  scenario-wide values (scenario variables, data sources, captures)
- step:   values bound for the current step only

Resolution order is step > local > global. `clone()` copies the global and
local scopes into fresh dicts (values themselves are shared, not deep-copied)
and starts with an empty step scope; this is how scenarios, concurrent test
groups and data-driven iterations are isolated from each other.

Templates use `{{name}}` or `${{name}}`. A leading `env.` is cosmetic and
stripped. Dotted names (`{{user.address.city}}`) navigate nested values.
Unresolved placeholders are left untouched.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from apiscenario.values import normalize, to_text

logger = logging.getLogger(__name__)

_TEMPLATE_RE = re.compile(r"\$\{\{([^}]+)\}\}|\{\{([^}]+)\}\}")


class Scope(str, Enum):
    GLOBAL = "global"
    LOCAL = "local"
    STEP = "step"


def _placeholder_name(match: re.Match) -> str:
    name = (match.group(1) if match.group(1) is not None else match.group(2)).strip()
    if name.startswith("env."):
        name = name[len("env."):]
    return name


def _as_mapping(value: Any) -> Optional[Dict[str, Any]]:
    """Re-shape a structured value into a dict, or None if it is not map-shaped"""
    if isinstance(value, Mapping):
        return dict(value)
    try:
        reshaped = json.loads(json.dumps(normalize(value)))
    except (TypeError, ValueError):
        return None
    return reshaped if isinstance(reshaped, dict) else None


class VariableContext:
    """Layered (global/local/step) variable namespace"""

    def __init__(self):
        self._global: Dict[str, Any] = {}
        self._local: Dict[str, Any] = {}
        self._step: Dict[str, Any] = {}

    def __repr__(self) -> str:
        return (
            f"VariableContext(global={len(self._global)}, "
            f"local={len(self._local)}, step={len(self._step)})"
        )

    # ==================== Scopes ====================

    def _scope(self, scope: Scope) -> Dict[str, Any]:
        if scope is Scope.GLOBAL:
            return self._global
        if scope is Scope.LOCAL:
            return self._local
        return self._step

    def set(self, scope: Scope, key: str, value: Any) -> None:
        self._scope(Scope(scope))[key] = value

    def set_global(self, key: str, value: Any) -> None:
        self._global[key] = value

    def set_local(self, key: str, value: Any) -> None:
        self._local[key] = value

    def set_step(self, key: str, value: Any) -> None:
        self._step[key] = value

    def update(self, scope: Scope, values: Optional[Mapping[str, Any]]) -> None:
        for key, value in (values or {}).items():
            self.set(scope, key, value)

    def clear_step(self) -> None:
        self._step = {}

    def clone(self) -> "VariableContext":
        clone = VariableContext()
        clone._global = dict(self._global)
        clone._local = dict(self._local)
        return clone

    # ==================== Lookup ====================

    def get(self, key: str) -> Tuple[Any, bool]:
        for scope in (self._step, self._local, self._global):
            if key in scope:
                return scope[key], True
        return None, False

    def get_nested(self, path: str) -> Tuple[Any, bool]:
        """Resolve a dotted path; returns (None, False) on any miss"""
        if "." not in path:
            return self.get(path)

        root, *rest = path.split(".")
        current, found = self.get(root)
        if not found:
            return None, False

        for part in rest:
            mapping = _as_mapping(current)
            if mapping is None or part not in mapping:
                return None, False
            current = mapping[part]

        return current, True

    def get_all(self) -> Dict[str, Any]:
        merged: Dict[str, Any] = {}
        merged.update(self._global)
        merged.update(self._local)
        merged.update(self._step)
        return merged

    # ==================== Interpolation ====================

    def interpolate_string(self, text: str) -> str:
        def replace(match: re.Match) -> str:
            value, found = self.get_nested(_placeholder_name(match))
            return to_text(value) if found else match.group(0)

        return _TEMPLATE_RE.sub(replace, text)

    def interpolate_map(self, mapping: Optional[Mapping[str, Any]]) -> Dict[str, str]:
        return {
            self.interpolate_string(str(k)): self.interpolate_string(to_text(v))
            for k, v in (mapping or {}).items()
        }

    def interpolate(self, value: Any) -> Any:
        """Recursively interpolate strings inside dicts and lists"""
        if isinstance(value, str):
            return self.interpolate_string(value)
        if isinstance(value, Mapping):
            return {self.interpolate_string(str(k)): self.interpolate(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.interpolate(v) for v in value]
        return value

    def resolve_reference(self, text: str) -> Tuple[Any, bool]:
        """If `text` is exactly one placeholder, return the raw variable it names"""
        match = _TEMPLATE_RE.fullmatch(text.strip())
        if not match:
            return None, False
        return self.get_nested(_placeholder_name(match))

    # ==================== Builtins ====================

    def add_builtins(self, now: Optional[datetime] = None) -> None:
        now = now or datetime.now(timezone.utc).astimezone()
        self.set_global("timestamp", int(now.timestamp()))
        self.set_global("timestamp_ms", int(now.timestamp() * 1000))
        self.set_global("iso_timestamp", now.isoformat(timespec="seconds"))
        self.set_global("date", now.strftime("%Y-%m-%d"))
        self.set_global("time", now.strftime("%H:%M:%S"))


def has_placeholders(text: Any) -> bool:
    return isinstance(text, str) and _TEMPLATE_RE.search(text) is not None
