# apiscenario/results.py
"""Execution result records handed to the reporter."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from apiscenario.models import Assertion
from apiscenario.values import json_safe


class StepStatus(str, Enum):
    """Step / group / scenario status"""
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts else None


def _duration_ms(start: Optional[datetime], end: Optional[datetime]) -> int:
    if not start or not end:
        return 0
    return int((end - start).total_seconds() * 1000)


@dataclass
class AssertionResult:
    passed: bool
    message: str = ""
    expected: Any = None
    actual: Any = None
    duration_ms: float = 0.0
    assertion: Optional[Assertion] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "passed": self.passed,
            "message": self.message,
            "expected": json_safe(self.expected),
            "actual": json_safe(self.actual),
            "duration_ms": round(self.duration_ms, 3),
        }
        if self.assertion is not None:
            out["type"] = self.assertion.type
            out["field"] = self.assertion.field
            out["operator"] = self.assertion.operator or "eq"
        return out


@dataclass
class StepResult:
    name: str
    group: str = ""
    status: StepStatus = StepStatus.PASSED
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    request: Optional[Dict[str, Any]] = None
    response: Optional[Dict[str, Any]] = None
    assertions: List[AssertionResult] = field(default_factory=list)
    error: Optional[str] = None
    variables: Dict[str, Any] = field(default_factory=dict)
    children: List["StepResult"] = field(default_factory=list)

    @property
    def duration_ms(self) -> int:
        return _duration_ms(self.started_at, self.finished_at)

    @property
    def passed(self) -> bool:
        return self.status is not StepStatus.FAILED

    def fail(self, error: str) -> None:
        self.status = StepStatus.FAILED
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "group": self.group,
            "status": self.status.value,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "duration_ms": self.duration_ms,
            "request": self.request,
            "response": self.response,
            "assertions": [a.to_dict() for a in self.assertions],
            "error": self.error,
            "variables": json_safe(self.variables),
            "children": [c.to_dict() for c in self.children],
        }


@dataclass
class GroupResult:
    name: str
    status: StepStatus = StepStatus.PASSED
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    steps: List[StepResult] = field(default_factory=list)
    variables: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def duration_ms(self) -> int:
        return _duration_ms(self.started_at, self.finished_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "duration_ms": self.duration_ms,
            "steps": [s.name for s in self.steps],
            "variables": json_safe(self.variables),
            "error": self.error,
        }


@dataclass
class ScenarioResult:
    scenario_name: str
    status: StepStatus = StepStatus.PASSED
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    steps: List[StepResult] = field(default_factory=list)
    groups: List[GroupResult] = field(default_factory=list)
    error: Optional[str] = None
    variables: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration_ms(self) -> int:
        return _duration_ms(self.started_at, self.finished_at)

    @property
    def passed(self) -> bool:
        return self.status is StepStatus.PASSED

    def step(self, name: str) -> Optional[StepResult]:
        for s in self.steps:
            if s.name == name:
                return s
        return None

    def group(self, name: str) -> Optional[GroupResult]:
        for g in self.groups:
            if g.name == name:
                return g
        return None

    def counts(self) -> Dict[str, int]:
        out = {status.value: 0 for status in StepStatus}
        for s in self.steps:
            out[s.status.value] += 1
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenario": self.scenario_name,
            "status": self.status.value,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "duration_ms": self.duration_ms,
            "error": self.error,
            "counts": self.counts(),
            "steps": [s.to_dict() for s in self.steps],
            "groups": [g.to_dict() for g in self.groups],
            "variables": json_safe(self.variables),
        }
