# apiscenario/models.py
"""
Scenario data model.

Scenario files are YAML or JSON documents; these pydantic models parse and
validate them once at load time so the engine only ever sees well-formed
structures (names present, URLs present, HTTP methods defaulted).
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

VALID_STEP_TYPES = ("http", "grpc", "websocket", "trpc", "soap", "custom")

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, None: 1.0}


def parse_duration(value: Any) -> Optional[float]:
    """Parse `30`, `1.5`, `"500ms"`, `"30s"`, `"2m"` into seconds"""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    m = _DURATION_RE.match(str(value))
    if not m:
        raise ValueError(f"invalid duration: {value!r}")
    return float(m.group(1)) * _DURATION_UNITS[m.group(2)]


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ==================== Step building blocks ====================

class AuthConfig(_Model):
    type: str
    username: str = ""
    password: str = ""
    token: str = ""
    config: Dict[str, Any] = Field(default_factory=dict)


class Capture(_Model):
    jsonpath: str = ""
    header: str = ""
    regex: str = ""

    @model_validator(mode="after")
    def _one_mode(self) -> "Capture":
        modes = [m for m in (self.jsonpath, self.header, self.regex) if m]
        if len(modes) != 1:
            raise ValueError("capture must define exactly one of jsonpath, header or regex")
        return self


class Assertion(_Model):
    type: str
    field: str = ""
    operator: str = ""
    value: Any = None
    description: str = ""
    optional: bool = False


class HTTPStep(_Model):
    url: str
    method: str = "GET"
    headers: Dict[str, Any] = Field(default_factory=dict)
    query: Dict[str, Any] = Field(default_factory=dict)
    body: Any = None
    json_body: Any = Field(default=None, alias="json")
    auth: Optional[AuthConfig] = None
    cookies: Dict[str, Any] = Field(default_factory=dict)
    check: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("method")
    @classmethod
    def _upper_method(cls, v: str) -> str:
        return (v or "GET").upper()


class Request(_Model):
    """Legacy request descriptor"""
    method: str = ""
    url: str = ""
    headers: Dict[str, Any] = Field(default_factory=dict)
    query: Dict[str, Any] = Field(default_factory=dict)
    body: Any = None
    auth: Optional[AuthConfig] = None
    cookies: Dict[str, Any] = Field(default_factory=dict)
    follow_redirect: Optional[bool] = None
    config: Dict[str, Any] = Field(default_factory=dict)


class DataDriven(_Model):
    source: str
    variable: str = "item"


class RetryConfig(_Model):
    count: int = 0
    delay: float = 0.0
    backoff: str = "linear"

    @field_validator("delay", mode="before")
    @classmethod
    def _delay(cls, v: Any) -> float:
        return parse_duration(v) or 0.0

    @field_validator("backoff")
    @classmethod
    def _backoff(cls, v: str) -> str:
        if v not in ("linear", "exponential"):
            raise ValueError(f"unsupported backoff: {v}")
        return v


class Step(_Model):
    name: str = ""
    description: str = ""
    type: str = ""
    http: Optional[HTTPStep] = None
    request: Request = Field(default_factory=Request)
    capture: Dict[str, Capture] = Field(default_factory=dict)
    check: Dict[str, Any] = Field(default_factory=dict)
    assertions: List[Assertion] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)
    condition: str = ""
    data_driven: Optional[DataDriven] = Field(default=None, alias="dataDriven")
    retry: Optional[RetryConfig] = None
    timeout: Optional[float] = None

    @field_validator("timeout", mode="before")
    @classmethod
    def _timeout(cls, v: Any) -> Optional[float]:
        return parse_duration(v)

    @model_validator(mode="after")
    def _validate(self) -> "Step":
        if not self.name:
            raise ValueError("step name is required")

        if self.http is not None:
            if not self.http.url:
                raise ValueError(f"step '{self.name}': HTTP step URL is required")
            return self

        # Steps that only bind variables carry no request at all
        if not self.request.url and not self.type and not self.assertions:
            return self

        self.type = self.type or "http"
        if self.type not in VALID_STEP_TYPES:
            raise ValueError(f"step '{self.name}': invalid step type: {self.type}")
        if self.type == "http":
            self.request.method = (self.request.method or "GET").upper()
            if not self.request.url:
                raise ValueError(f"step '{self.name}': HTTP request URL is required")
        return self

    @property
    def is_legacy(self) -> bool:
        return self.http is None

    @property
    def has_request(self) -> bool:
        return self.http is not None or bool(self.type)


class TestGroup(_Model):
    __test__ = False  # not a pytest class

    name: str = ""
    env: Dict[str, Any] = Field(default_factory=dict)
    skip: bool = False
    continue_on_fail: bool = Field(default=False, alias="continueOnFail")
    steps: List[Step] = Field(default_factory=list)
    data_driven: Optional[DataDriven] = Field(default=None, alias="dataDriven")

    @model_validator(mode="after")
    def _validate(self) -> "TestGroup":
        if not self.steps:
            raise ValueError("test group must have at least one step")
        return self


# ==================== Scenario ====================

class HTTPConfig(_Model):
    timeout: Optional[float] = None
    follow_redirects: Optional[bool] = Field(default=None, alias="followRedirects")
    verify_ssl: Optional[bool] = Field(default=None, alias="verifySSL")

    @field_validator("timeout", mode="before")
    @classmethod
    def _timeout(cls, v: Any) -> Optional[float]:
        return parse_duration(v)


class ScenarioConfig(_Model):
    http: Optional[HTTPConfig] = None
    parallel: bool = False
    concurrency: int = 0
    timeout: Optional[float] = None
    retries: int = 0
    fail_fast: bool = Field(default=False, alias="failFast")
    environment: str = ""

    @field_validator("timeout", mode="before")
    @classmethod
    def _timeout(cls, v: Any) -> Optional[float]:
        return parse_duration(v)


class DataSource(_Model):
    type: str
    path: str = ""
    data: Any = None


class ScenarioMetadata(_Model):
    author: str = ""
    version: str = ""
    tags: List[str] = Field(default_factory=list)
    labels: Dict[str, str] = Field(default_factory=dict)


class Scenario(_Model):
    version: str = ""
    name: str = ""
    description: str = ""
    env: Dict[str, Any] = Field(default_factory=dict)
    variables: Dict[str, Any] = Field(default_factory=dict)
    data: Dict[str, DataSource] = Field(default_factory=dict)
    config: ScenarioConfig = Field(default_factory=ScenarioConfig)
    before: Optional[TestGroup] = None
    setup: List[Step] = Field(default_factory=list)
    steps: List[Step] = Field(default_factory=list)
    tests: Dict[str, TestGroup] = Field(default_factory=dict)
    teardown: List[Step] = Field(default_factory=list)
    after: Optional[TestGroup] = None
    metadata: ScenarioMetadata = Field(default_factory=ScenarioMetadata)
    # Directory data source paths resolve against; set by the loader
    base_dir: str = Field(default="", exclude=True)

    @model_validator(mode="after")
    def _validate(self) -> "Scenario":
        if not self.name:
            raise ValueError("scenario name is required")
        if not self.steps and not self.tests:
            raise ValueError("scenario must have either steps or tests")
        for key, group in self.tests.items():
            if not group.name:
                group.name = key
        return self
