# apiscenario/assertions.py
"""
Assertion engine.

`AssertionEngine.run_assertions()` evaluates a list of `Assertion` models
against one `HTTPResponse`:

1. the expected value is interpolated through the variable context
   (schema checks resolve a lone `{{var}}` to the stored object itself)
2. the actual value is extracted by assertion type
3. the operator compares the two and produces a report-ready message

A bad check never aborts the run: unsupported types and operators, invalid
patterns and extraction failures all become failed results (or passed ones
for `optional` assertions whose target is missing).
"""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from jsonschema import exceptions as jsonschema_exceptions
from jsonschema.validators import validator_for

from apiscenario.errors import ExtractionError
from apiscenario.extraction import extract_header, extract_json_path, extract_regex
from apiscenario.models import Assertion
from apiscenario.results import AssertionResult
from apiscenario.transport import HTTPResponse
from apiscenario.values import is_numeric, to_float, to_text
from apiscenario.variables import VariableContext, has_placeholders

logger = logging.getLogger(__name__)

Comparison = Tuple[bool, str]


# ==================== Schema validation ====================

class SchemaValidator:
    """Validate JSON documents against JSON schemas, reporting every violation"""

    def validate(self, document: Any, schema: Any) -> Tuple[bool, Optional[str]]:
        if isinstance(schema, str):
            try:
                schema = json.loads(schema)
            except ValueError as e:
                return False, f"schema validation error: invalid schema JSON: {e}"
        if not isinstance(schema, (dict, bool)):
            return False, "schema validation error: schema must be a JSON object"

        if isinstance(document, (str, bytes)):
            try:
                document = json.loads(document)
            except ValueError as e:
                return False, f"schema validation error: invalid JSON document: {e}"

        try:
            cls = validator_for(schema)
            cls.check_schema(schema)
            errors = sorted(
                cls(schema).iter_errors(document),
                key=lambda err: [str(p) for p in err.absolute_path],
            )
        except jsonschema_exceptions.SchemaError as e:
            return False, f"schema validation error: {e.message}"

        if not errors:
            return True, None
        return False, "; ".join(_format_schema_error(err) for err in errors)


def _format_schema_error(err: jsonschema_exceptions.ValidationError) -> str:
    location = "/".join(str(p) for p in err.absolute_path) or "(root)"
    return f"{location}: {err.message}"


# ==================== Comparisons ====================

def _deep_equal(a: Any, b: Any) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if is_numeric(a) and is_numeric(b):
        return float(a) == float(b)
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(_deep_equal(a[k], b[k]) for k in a)
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return len(a) == len(b) and all(_deep_equal(x, y) for x, y in zip(a, b))
    return type(a) is type(b) and a == b


def compare_equal(actual: Any, expected: Any) -> Comparison:
    if _deep_equal(actual, expected) or to_text(actual) == to_text(expected):
        return True, f"value equals {to_text(expected)}"
    return False, f"expected {to_text(expected)} but got {to_text(actual)}"


def compare_not_equal(actual: Any, expected: Any) -> Comparison:
    passed, message = compare_equal(actual, expected)
    return not passed, message.replace("equals", "does not equal", 1)


def _ordering(symbol: Callable[[float, float], bool], phrase: str) -> Callable[[Any, Any], Comparison]:
    def compare(actual: Any, expected: Any) -> Comparison:
        if not is_numeric(actual) or not is_numeric(expected):
            return False, "comparison requires numeric values"
        a, e = to_text(actual), to_text(expected)
        if symbol(to_float(actual), to_float(expected)):
            return True, f"value {a} is {phrase} {e}"
        return False, f"expected value {phrase} {e} but got {a}"
    return compare


def compare_contains(actual: Any, expected: Any) -> Comparison:
    a, e = to_text(actual), to_text(expected)
    if e in a:
        return True, f"value contains {e}"
    return False, f"expected value to contain {e} but got {a}"


def compare_not_contains(actual: Any, expected: Any) -> Comparison:
    passed, message = compare_contains(actual, expected)
    return not passed, message.replace("contains", "does not contain", 1)


def compare_matches(actual: Any, expected: Any) -> Comparison:
    a, e = to_text(actual), to_text(expected)
    try:
        matched = re.search(e, a) is not None
    except re.error as err:
        return False, f"invalid regex pattern: {err}"
    if matched:
        return True, f"value matches pattern {e}"
    return False, f"expected value to match pattern {e} but got {a}"


def compare_starts_with(actual: Any, expected: Any) -> Comparison:
    a, e = to_text(actual), to_text(expected)
    if a.startswith(e):
        return True, f"value starts with {e}"
    return False, f"expected value to start with {e} but got {a}"


def compare_ends_with(actual: Any, expected: Any) -> Comparison:
    a, e = to_text(actual), to_text(expected)
    if a.endswith(e):
        return True, f"value ends with {e}"
    return False, f"expected value to end with {e} but got {a}"


def _expected_length(expected: Any) -> Optional[int]:
    if isinstance(expected, bool):
        return None
    if isinstance(expected, int):
        return expected
    if isinstance(expected, float):
        return int(expected)
    if isinstance(expected, str):
        try:
            return int(expected.strip())
        except ValueError:
            return None
    return None


def compare_length(actual: Any, expected: Any) -> Comparison:
    want = _expected_length(expected)
    if want is None:
        return False, "expected length must be a number"
    if not isinstance(actual, (str, list, tuple, dict)):
        return False, f"value of type {type(actual).__name__} has no length"
    got = len(actual)
    if got == want:
        return True, f"length equals {want}"
    return False, f"expected length {want} but got {got}"


def compare_json_schema(actual: Any, expected: Any) -> Comparison:
    valid, error = SchemaValidator().validate(actual, expected)
    if valid:
        return True, "JSON response validates against provided schema"
    if error and error.startswith("schema validation error"):
        return False, error
    return False, f"JSON schema validation failed: {error}"


_OPERATORS: Dict[str, Callable[[Any, Any], Comparison]] = {}


def _register(names: Tuple[str, ...], fn: Callable[[Any, Any], Comparison]) -> None:
    for name in names:
        _OPERATORS[name] = fn


_register(("eq", "equals", "=="), compare_equal)
_register(("ne", "not_equals", "!="), compare_not_equal)
_register(("gt", ">"), _ordering(lambda a, e: a > e, "greater than"))
_register(("gte", ">="), _ordering(lambda a, e: a >= e, "greater than or equal to"))
_register(("lt", "<"), _ordering(lambda a, e: a < e, "less than"))
_register(("lte", "<="), _ordering(lambda a, e: a <= e, "less than or equal to"))
_register(("contains",), compare_contains)
_register(("not_contains",), compare_not_contains)
_register(("matches", "regex"), compare_matches)
_register(("starts_with",), compare_starts_with)
_register(("ends_with",), compare_ends_with)
_register(("length",), compare_length)
_register(("json_schema",), compare_json_schema)


def compare(actual: Any, expected: Any, operator: str = "") -> Comparison:
    fn = _OPERATORS.get(operator or "eq")
    if fn is None:
        return False, f"unsupported operator: {operator}"
    return fn(actual, expected)


# ==================== Engine ====================

class AssertionEngine:
    """Evaluates assertions against responses; reads (never writes) the context"""

    def __init__(self, ctx: VariableContext):
        self.ctx = ctx

    def run_assertions(
        self,
        assertions: List[Assertion],
        response: HTTPResponse,
    ) -> Tuple[List[AssertionResult], Optional[str]]:
        """Returns (results, engine_error); engine_error is None in normal operation"""
        results = [self.run_assertion(a, response) for a in assertions]
        return results, None

    def run_assertion(self, assertion: Assertion, response: HTTPResponse) -> AssertionResult:
        t0 = time.perf_counter()
        result = AssertionResult(passed=False, assertion=assertion)

        expected = self._resolve_expected(assertion)
        try:
            actual = self.extract_actual(assertion, response)
        except ExtractionError as e:
            if assertion.optional:
                result.passed = True
                result.message = f"Optional assertion skipped: {e}"
            else:
                result.message = f"Failed to extract value: {e}"
            result.expected = expected
            result.duration_ms = (time.perf_counter() - t0) * 1000
            return result

        operator = assertion.operator
        if not operator and assertion.type == "json_schema":
            operator = "json_schema"

        passed, message = compare(actual, expected, operator)
        result.passed = passed
        result.expected = expected
        result.actual = actual
        result.message = f"{assertion.description}: {message}" if assertion.description else message
        result.duration_ms = (time.perf_counter() - t0) * 1000
        return result

    def _resolve_expected(self, assertion: Assertion) -> Any:
        value = assertion.value
        if isinstance(value, str):
            if not has_placeholders(value):
                return value
            if assertion.type == "json_schema":
                resolved, found = self.ctx.resolve_reference(value)
                if found:
                    return resolved
            return self.ctx.interpolate_string(value)
        if isinstance(value, (dict, list)):
            return self.ctx.interpolate(value)
        return value

    @staticmethod
    def extract_actual(assertion: Assertion, response: HTTPResponse) -> Any:
        kind = assertion.type
        if kind in ("status", "status_code"):
            return response.status_code
        if kind == "header":
            return extract_header(response, assertion.field)
        if kind in ("body", "json_schema"):
            return response.body_text
        if kind in ("json", "json_path"):
            return extract_json_path(response, assertion.field)
        if kind == "regex":
            value = extract_regex(response, assertion.field)
            return value[0] if isinstance(value, list) else value
        if kind == "response_time":
            return response.elapsed_ms
        if kind == "size":
            return response.size
        if kind == "xpath":
            raise ExtractionError("XPath assertions not yet implemented")
        raise ExtractionError(f"unsupported assertion type: {kind}")


# ==================== Shorthand checks ====================

def checks_to_assertions(checks: Optional[Mapping[str, Any]]) -> List[Assertion]:
    """
    Expand the `check:` shorthand map into assertions.

        status: 200                  -> status_code == 200
        json:user.id: 123            -> json user.id == 123
        header:Content-Type: ...     -> header Content-Type == ...
        regex:token=(\\w+): abc      -> regex first group == abc
        json_schema: {...}           -> body validates against schema
        body: ok                     -> body == ok
    """
    out: List[Assertion] = []
    for key, expected in (checks or {}).items():
        kind, _, field_name = key.partition(":")
        if kind == "status":
            kind = "status_code"
        operator = "json_schema" if kind == "json_schema" else "eq"
        out.append(Assertion(type=kind, field=field_name, operator=operator, value=expected))
    return out
