"""Tests for the httpx-backed transport."""
from __future__ import annotations

import base64
import json

import httpx
import pytest

from apiscenario.config import Settings
from apiscenario.errors import TransportError
from apiscenario.models import AuthConfig, RetryConfig
from apiscenario.transport import HTTPResponse, HTTPTransport, ResolvedRequest, redact_sensitive


def _transport(handler, settings: Settings) -> HTTPTransport:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HTTPTransport(settings, client=client)


class TestRequestBuilding:
    def test_build_url_joins_base(self, settings):
        cfg = settings.model_copy(update={"base_url": "https://api.test/v1/"})
        transport = HTTPTransport(cfg)
        assert transport.build_url(ResolvedRequest("GET", "/users")) == "https://api.test/v1/users"
        assert transport.build_url(ResolvedRequest("GET", "users")) == "https://api.test/v1/users"
        assert transport.build_url(ResolvedRequest("GET", "http://other.test/x")) == "http://other.test/x"

    def test_request_base_url_override(self, settings):
        transport = HTTPTransport(settings.model_copy(update={"base_url": "https://prod.test"}))
        request = ResolvedRequest("GET", "/x", base_url="https://staging.test")
        assert transport.build_url(request) == "https://staging.test/x"

    def test_headers_merge_and_cookies(self, settings):
        transport = HTTPTransport(settings.model_copy(update={"headers": {"Accept": "application/json", "X-A": "1"}}))
        request = ResolvedRequest("GET", "/", headers={"X-A": "2"}, cookies={"sid": "abc", "theme": "dark"})
        headers = transport.build_headers(request)
        assert headers["Accept"] == "application/json"
        assert headers["X-A"] == "2"
        assert headers["Cookie"] == "sid=abc; theme=dark"

    def test_basic_auth(self, settings):
        headers = HTTPTransport(settings).build_headers(
            ResolvedRequest("GET", "/", auth=AuthConfig(type="basic", username="u", password="p"))
        )
        assert headers["Authorization"] == "Basic " + base64.b64encode(b"u:p").decode()

    def test_bearer_and_api_key(self, settings):
        transport = HTTPTransport(settings)
        bearer = transport.build_headers(ResolvedRequest("GET", "/", auth=AuthConfig(type="bearer", token="t")))
        api_key = transport.build_headers(ResolvedRequest(
            "GET", "/", auth=AuthConfig(type="api_key", token="k", config={"header": "X-API-Key"}),
        ))
        assert bearer["Authorization"] == "Bearer t"
        assert api_key["X-API-Key"] == "k"

    def test_unsupported_auth(self, settings):
        with pytest.raises(TransportError, match="unsupported auth type"):
            HTTPTransport(settings).build_headers(ResolvedRequest("GET", "/", auth=AuthConfig(type="oauth2")))


class TestExecute:
    @pytest.mark.asyncio
    async def test_json_body_query_and_method(self, settings):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["params"] = dict(request.url.params)
            seen["body"] = json.loads(request.content)
            seen["ctype"] = request.headers["content-type"]
            return httpx.Response(201, json={"ok": True}, headers={"X-Trace": "t1"})

        transport = _transport(handler, settings)
        response = await transport.execute(ResolvedRequest(
            "post", "https://api.test/items", query={"page": "2"}, json_body={"name": "x"},
        ))

        assert seen == {"method": "POST", "params": {"page": "2"}, "body": {"name": "x"}, "ctype": "application/json"}
        assert response.status_code == 201
        assert json.loads(response.body_text) == {"ok": True}
        assert response.headers["X-Trace"] == ["t1"]
        assert response.size == len(response.body)

    @pytest.mark.asyncio
    async def test_raw_string_body_defaults_to_json_content_type(self, settings):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = request.content.decode()
            seen["ctype"] = request.headers.get("content-type")
            return httpx.Response(200)

        await _transport(handler, settings).execute(ResolvedRequest("PUT", "https://api.test/x", body='{"a": 1}'))
        assert seen == {"body": '{"a": 1}', "ctype": "application/json"}

    @pytest.mark.asyncio
    async def test_explicit_content_type_is_kept(self, settings):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["ctype"] = request.headers.get("content-type")
            return httpx.Response(200)

        await _transport(handler, settings).execute(ResolvedRequest(
            "POST", "https://api.test/x", headers={"Content-Type": "text/plain"}, body="hello",
        ))
        assert seen["ctype"] == "text/plain"

    @pytest.mark.asyncio
    async def test_retries_on_5xx_then_succeeds(self, settings):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            return httpx.Response(503 if len(calls) < 3 else 200)

        response = await _transport(handler, settings).execute(ResolvedRequest(
            "GET", "https://api.test/x", retry=RetryConfig(count=3, delay=0),
        ))
        assert response.status_code == 200
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_last_5xx_is_returned_when_retries_exhausted(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502)

        response = await _transport(handler, settings).execute(ResolvedRequest(
            "GET", "https://api.test/x", retry=RetryConfig(count=1, delay=0),
        ))
        assert response.status_code == 502

    @pytest.mark.asyncio
    async def test_connection_errors_raise_after_retries(self, settings):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            raise httpx.ConnectError("refused", request=request)

        transport = _transport(handler, settings)
        with pytest.raises(TransportError) as exc_info:
            await transport.execute(ResolvedRequest("GET", "https://api.test/x", retry=RetryConfig(count=1, delay=0)))

        assert exc_info.value.attempts == 2
        assert len(calls) == 2
        assert "failed to execute request" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_owned_client_lifecycle(self, settings):
        async with HTTPTransport(settings) as transport:
            assert transport._client is not None
        assert transport._client is None


class TestResponseRecord:
    def test_from_httpx_keeps_multi_value_headers(self):
        resp = httpx.Response(
            200,
            headers=[("Set-Cookie", "a=1"), ("Set-Cookie", "b=2"), ("Content-Type", "text/plain")],
            content=b"hello",
        )
        record = HTTPResponse.from_httpx(resp, elapsed=0.1234)
        assert record.headers["Set-Cookie"] == ["a=1", "b=2"]
        assert record.body_text == "hello"
        assert record.size == 5
        assert record.elapsed_ms == 123

    def test_to_dict_redacts_and_truncates(self):
        record = HTTPResponse(
            status_code=200,
            headers={"Set-Cookie": ["secret"]},
            body=b"x" * 20,
            body_text="x" * 20,
            elapsed=0.01,
            size=20,
        )
        out = record.to_dict(include_body=True, max_chars=5)
        assert out["headers"]["Set-Cookie"] == "[REDACTED]"
        assert out["body"] == "xxxxx..."

    def test_request_to_dict_redacts(self):
        request = ResolvedRequest("GET", "/x", headers={"Authorization": "Bearer t", "Accept": "*/*"},
                                  json_body={"password": "p", "user": "u"})
        out = request.to_dict()
        assert out["headers"] == {"Authorization": "[REDACTED]", "Accept": "*/*"}
        assert out["body"] == {"password": "[REDACTED]", "user": "u"}


def test_redact_nested():
    assert redact_sensitive({"a": [{"token": "t"}], "b": 1}) == {"a": [{"token": "[REDACTED]"}], "b": 1}


def test_backoff():
    assert HTTPTransport._backoff(0.5, "linear", 0) == 0.5
    assert HTTPTransport._backoff(0.5, "linear", 2) == 1.5
    assert HTTPTransport._backoff(0.5, "exponential", 3) == 4.0
