"""Tests for the assertion engine and operator semantics."""
from __future__ import annotations

import pytest

from apiscenario.assertions import (
    AssertionEngine,
    SchemaValidator,
    checks_to_assertions,
    compare,
)
from apiscenario.models import Assertion


def _run(ctx, response, **fields):
    return AssertionEngine(ctx).run_assertion(Assertion(**fields), response)


class TestEquality:
    def test_int_equals_float(self):
        assert compare(200, 200.0, "eq") == (True, "value equals 200")

    def test_string_form_fallback(self):
        passed, message = compare("200", 200)
        assert passed
        assert message == "value equals 200"

    def test_bool_is_not_numeric_one(self):
        passed, message = compare(True, 1, "eq")
        assert not passed
        assert message == "expected 1 but got true"

    def test_deep_equality_of_structures(self):
        assert compare({"a": [1, 2.0]}, {"a": [1.0, 2]}, "equals")[0]
        assert not compare({"a": [1]}, {"a": [2]}, "==")[0]

    def test_not_equal_flips_polarity(self):
        assert compare(1, 1, "ne") == (False, "value does not equal 1")
        assert compare(1, 2, "!=")[0] is True


class TestOrdering:
    @pytest.mark.parametrize("operator,actual,expected,passed", [
        ("gt", 5, 3, True),
        (">", 3, 5, False),
        ("gte", 5, 5.0, True),
        (">=", 4, 5, False),
        ("lt", 1, 2, True),
        ("<", 2, 2, False),
        ("lte", 2, 2, True),
        ("<=", 3, 2, False),
    ])
    def test_numeric_ordering(self, operator, actual, expected, passed):
        assert compare(actual, expected, operator)[0] is passed

    def test_failure_message_names_operator(self):
        assert compare(2, 5, "gt") == (False, "expected value greater than 5 but got 2")
        assert compare(9, 5, "gt") == (True, "value 9 is greater than 5")

    def test_non_numeric_comparison_fails(self):
        assert compare("10", 5, "gt") == (False, "comparison requires numeric values")
        assert compare(True, 0, "gt") == (False, "comparison requires numeric values")


class TestStringOperators:
    def test_contains(self):
        assert compare("hello world", "world", "contains") == (True, "value contains world")
        assert compare("hello", "x", "contains") == (False, "expected value to contain x but got hello")

    def test_not_contains(self):
        assert compare("hello", "x", "not_contains")[0] is True
        assert compare("hello", "ell", "not_contains") == (False, "value does not contain ell")

    def test_prefix_and_suffix(self):
        assert compare("application/json", "application", "starts_with")[0]
        assert compare("application/json", "json", "ends_with")[0]
        assert compare("abc", "x", "starts_with")[1] == "expected value to start with x but got abc"

    def test_regex(self):
        assert compare("ORD-123", r"^ORD-\d+$", "matches") == (True, "value matches pattern ^ORD-\\d+$")
        assert compare("x", r"\d", "regex")[0] is False

    def test_invalid_regex_is_a_failure(self):
        passed, message = compare("x", "(", "matches")
        assert not passed
        assert message.startswith("invalid regex pattern")


class TestLength:
    def test_sequence_length(self):
        assert compare([1, 2, 3], 3, "length") == (True, "length equals 3")

    def test_float_expectation_truncated(self):
        assert compare("abc", 3.9, "length")[0] is True

    def test_integer_string_expectation(self):
        assert compare([1, 2, 3], "3", "length")[0] is True

    def test_non_numeric_expectation_fails(self):
        assert compare([1, 2, 3], "three", "length") == (False, "expected length must be a number")
        assert compare([1, 2, 3], True, "length") == (False, "expected length must be a number")

    def test_map_key_count(self):
        assert compare({"a": 1, "b": 2}, 2, "length")[0] is True

    def test_mismatch_message(self):
        assert compare("ab", 3, "length") == (False, "expected length 3 but got 2")

    def test_value_without_length(self):
        passed, message = compare(42, 2, "length")
        assert not passed
        assert "has no length" in message


class TestSchema:
    SCHEMA = {
        "type": "object",
        "required": ["id", "name"],
        "properties": {"id": {"type": "integer"}, "name": {"type": "string"}},
    }

    def test_valid_document(self):
        assert SchemaValidator().validate('{"id": 1, "name": "a"}', self.SCHEMA) == (True, None)

    def test_collects_every_violation(self):
        passed, message = compare('{"id": "x"}', self.SCHEMA, "json_schema")
        assert not passed
        assert message.startswith("JSON schema validation failed: ")
        assert "'name' is a required property" in message
        assert "'x' is not of type 'integer'" in message
        assert "; " in message

    def test_schema_given_as_json_text(self):
        assert compare('{"id": 1, "name": "a"}', '{"type": "object"}', "json_schema")[0]

    def test_body_not_json(self):
        passed, message = compare("<html/>", self.SCHEMA, "json_schema")
        assert not passed
        assert "invalid JSON document" in message

    def test_invalid_schema(self):
        passed, message = compare("{}", {"type": "not-a-type"}, "json_schema")
        assert not passed
        assert message.startswith("schema validation error")


class TestEngine:
    def test_status_assertion(self, ctx, make_response):
        result = _run(ctx, make_response({}, status_code=201), type="status_code", value=201)
        assert result.passed
        assert result.actual == 201
        assert result.expected == 201

    def test_default_operator_is_equality(self, ctx, make_response):
        result = _run(ctx, make_response({"id": 123}), type="json", field="id", value=123.0)
        assert result.passed
        assert result.message == "value equals 123"

    def test_expected_value_interpolated(self, ctx, make_response):
        ctx.set_local("uid", 123)
        result = _run(ctx, make_response({"id": 123}), type="json_path", field="id", value="{{uid}}")
        assert result.passed
        assert result.expected == "123"

    def test_schema_reference_resolves_to_object(self, ctx, make_response):
        ctx.set_local("user_schema", {"type": "object", "required": ["id"]})
        ok = _run(ctx, make_response({"id": 1}), type="json_schema", value="{{user_schema}}")
        bad = _run(ctx, make_response({}), type="json_schema", value="{{user_schema}}")
        assert ok.passed
        assert ok.message == "JSON response validates against provided schema"
        assert not bad.passed
        assert "'id' is a required property" in bad.message

    def test_optional_missing_target_passes(self, ctx, make_response):
        result = _run(ctx, make_response({}), type="json", field="user.email", value="x", optional=True)
        assert result.passed
        assert result.message.startswith("Optional assertion skipped")

    def test_required_missing_target_fails(self, ctx, make_response):
        result = _run(ctx, make_response({}), type="json", field="user.email", value="x")
        assert not result.passed
        assert result.message.startswith("Failed to extract value")

    def test_description_prefix(self, ctx, make_response):
        result = _run(ctx, make_response({}, status_code=500), type="status", value=200, description="healthy")
        assert not result.passed
        assert result.message == "healthy: expected 200 but got 500"

    def test_header_and_body(self, ctx, make_response):
        resp = make_response(text="pong", headers={"Content-Type": ["text/plain"]})
        assert _run(ctx, resp, type="header", field="content-type", operator="contains", value="text").passed
        assert _run(ctx, resp, type="body", value="pong").passed

    def test_regex_uses_first_group(self, ctx, make_response):
        resp = make_response(text="token=abc123;")
        assert _run(ctx, resp, type="regex", field=r"token=(\w+);", value="abc123").passed
        assert _run(ctx, resp, type="regex", field=r"token=\w+", value="token=abc123").passed

    def test_response_time_and_size(self, ctx, make_response):
        resp = make_response(text="12345", elapsed=0.25)
        assert _run(ctx, resp, type="response_time", operator="lt", value=1000).passed
        assert _run(ctx, resp, type="response_time", value=250).passed
        assert _run(ctx, resp, type="size", value=5).passed

    def test_unsupported_type_is_failed_result(self, ctx, make_response):
        result = _run(ctx, make_response({}), type="xpath", field="//a", value="x")
        assert not result.passed
        result = _run(ctx, make_response({}), type="telepathy", value="x")
        assert not result.passed
        assert "unsupported assertion type" in result.message

    def test_unsupported_operator_is_failed_result(self, ctx, make_response):
        result = _run(ctx, make_response({}), type="status", operator="approx", value=200)
        assert not result.passed
        assert result.message == "unsupported operator: approx"

    def test_run_assertions_keeps_going_after_failures(self, ctx, make_response):
        assertions = [
            Assertion(type="status", value=500),
            Assertion(type="nope"),
            Assertion(type="status", value=200),
        ]
        results, engine_error = AssertionEngine(ctx).run_assertions(assertions, make_response({}))
        assert engine_error is None
        assert [r.passed for r in results] == [False, False, True]


class TestChecksShorthand:
    def test_expansion(self):
        assertions = checks_to_assertions({
            "status": 200,
            "json:user.id": 7,
            "header:Content-Type": "application/json",
            "regex:id=(\\d+)": "7",
            "json_schema": {"type": "object"},
            "body": "ok",
        })
        shapes = [(a.type, a.field, a.operator) for a in assertions]
        assert shapes == [
            ("status_code", "", "eq"),
            ("json", "user.id", "eq"),
            ("header", "Content-Type", "eq"),
            ("regex", "id=(\\d+)", "eq"),
            ("json_schema", "", "json_schema"),
            ("body", "", "eq"),
        ]
        assert assertions[1].value == 7

    def test_empty(self):
        assert checks_to_assertions(None) == []
