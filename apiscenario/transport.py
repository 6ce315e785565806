# apiscenario/transport.py
"""
HTTP transport (httpx).

The engine hands a fully interpolated `ResolvedRequest` to a transport and
gets back a fixed-shape `HTTPResponse`, or a `TransportError` carrying an
opaque message. Retries with linear or exponential backoff happen here,
on connection errors and on 5xx responses.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import httpx

from apiscenario.config import Settings
from apiscenario.errors import TransportError
from apiscenario.models import AuthConfig, RetryConfig

logger = logging.getLogger(__name__)

_SENSITIVE_KEYS = {
    "authorization", "x-api-key", "api_key", "apikey", "token",
    "access_token", "cookie", "set-cookie", "x-auth-token", "x-access-token",
    "password", "proxy-authorization",
}


def redact_sensitive(data: Any) -> Any:
    """Recursively redact sensitive keys (headers, tokens) for reports"""
    if isinstance(data, dict):
        return {
            k: "[REDACTED]" if str(k).lower() in _SENSITIVE_KEYS else redact_sensitive(v)
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [redact_sensitive(item) for item in data]
    return data


# ==================== Data Models ====================

@dataclass
class HTTPResponse:
    """Transport-independent response record"""
    status_code: int
    headers: Dict[str, List[str]] = field(default_factory=dict)
    body: bytes = b""
    body_text: str = ""
    elapsed: float = 0.0  # seconds
    size: int = 0

    @property
    def elapsed_ms(self) -> int:
        return int(self.elapsed * 1000)

    @classmethod
    def from_httpx(cls, resp: httpx.Response, elapsed: float) -> "HTTPResponse":
        headers: Dict[str, List[str]] = {}
        for raw_key, raw_value in resp.headers.raw:
            key = raw_key.decode("latin-1")
            headers.setdefault(key, []).append(raw_value.decode("latin-1"))
        content = resp.content
        return cls(
            status_code=resp.status_code,
            headers=headers,
            body=content,
            body_text=resp.text,
            elapsed=elapsed,
            size=len(content),
        )

    def to_dict(self, include_body: bool = False, max_chars: int = 1000) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "status_code": self.status_code,
            "headers": redact_sensitive(self.headers),
            "elapsed_ms": self.elapsed_ms,
            "size": self.size,
        }
        if include_body:
            text = self.body_text
            out["body"] = text if len(text) <= max_chars else text[:max_chars] + "..."
        return out


@dataclass
class ResolvedRequest:
    """Request after interpolation, ready to send"""
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    query: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    json_body: Any = None
    auth: Optional[AuthConfig] = None
    cookies: Dict[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None
    retry: Optional[RetryConfig] = None
    follow_redirects: Optional[bool] = None
    base_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "url": self.url,
            "headers": redact_sensitive(self.headers),
            "query": self.query,
            "body": redact_sensitive(self.json_body if self.json_body is not None else self.body),
        }


class Transport(Protocol):
    async def execute(self, request: ResolvedRequest) -> HTTPResponse:
        ...


# ==================== httpx Transport ====================

class HTTPTransport:
    """
    httpx-backed transport.

    Pass `client` to reuse an existing `httpx.AsyncClient` (tests inject one
    built on `httpx.MockTransport`); otherwise a client is created from
    `Settings` on first use and closed by `aclose()` / `async with`.
    """

    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or Settings()
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "HTTPTransport":
        self._ensure_client()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.timeout_sec),
                verify=self.settings.verify_ssl,
                follow_redirects=self.settings.follow_redirects,
            )
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ==================== Request building ====================

    def build_url(self, request: ResolvedRequest) -> str:
        url = request.url
        base_url = request.base_url if request.base_url is not None else self.settings.base_url
        if not url.lower().startswith(("http://", "https://")) and base_url:
            url = base_url.rstrip("/") + "/" + url.lstrip("/")
        return url

    def build_headers(self, request: ResolvedRequest) -> Dict[str, str]:
        headers = {**self.settings.headers, **request.headers}
        self._apply_auth(headers, request.auth)
        if request.cookies:
            headers["Cookie"] = "; ".join(f"{k}={v}" for k, v in request.cookies.items())
        return headers

    @staticmethod
    def _apply_auth(headers: Dict[str, str], auth: Optional[AuthConfig]) -> None:
        if auth is None:
            return
        if auth.type == "basic":
            credentials = base64.b64encode(f"{auth.username}:{auth.password}".encode("utf-8")).decode("ascii")
            headers["Authorization"] = f"Basic {credentials}"
        elif auth.type == "bearer":
            headers["Authorization"] = f"Bearer {auth.token}"
        elif auth.type == "api_key":
            header_name = str(auth.config.get("header") or "Authorization")
            headers[header_name] = auth.token
        else:
            raise TransportError(f"unsupported auth type: {auth.type}")

    @staticmethod
    def _body_kwargs(request: ResolvedRequest) -> Dict[str, Any]:
        if request.json_body is not None:
            return {"json": request.json_body}
        body = request.body
        if body is None:
            return {}
        if isinstance(body, (bytes, bytearray)):
            return {"content": bytes(body)}
        if isinstance(body, str):
            return {"content": body.encode("utf-8")}
        return {"json": body}

    def _retry_policy(self, request: ResolvedRequest):
        if request.retry is not None:
            return max(0, request.retry.count), request.retry.delay, request.retry.backoff
        return max(0, self.settings.max_retries), self.settings.retry_delay_sec, "linear"

    # ==================== Execute ====================

    async def execute(self, request: ResolvedRequest) -> HTTPResponse:
        client = self._ensure_client()
        url = self.build_url(request)
        headers = self.build_headers(request)
        body_kwargs = self._body_kwargs(request)
        if "content" in body_kwargs and not any(k.lower() == "content-type" for k in headers):
            headers["Content-Type"] = "application/json"

        retries, delay, backoff = self._retry_policy(request)
        timeout = request.timeout if request.timeout is not None else self.settings.timeout_sec
        extra: Dict[str, Any] = {}
        if request.follow_redirects is not None:
            extra["follow_redirects"] = request.follow_redirects

        last_exc: Optional[Exception] = None
        for attempt in range(retries + 1):
            try:
                t0 = time.perf_counter()
                resp = await client.request(
                    request.method.upper(),
                    url,
                    headers=headers,
                    params=request.query or None,
                    timeout=timeout,
                    **body_kwargs,
                    **extra,
                )
                elapsed = time.perf_counter() - t0
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                last_exc = e
                if attempt < retries:
                    logger.warning(f"Request {request.method} {url} failed ({e!r}), retrying ({attempt + 1}/{retries})")
                    await asyncio.sleep(self._backoff(delay, backoff, attempt))
                    continue
                break

            if resp.status_code >= 500 and attempt < retries:
                logger.warning(f"{request.method} {url} returned {resp.status_code}, retrying ({attempt + 1}/{retries})")
                await asyncio.sleep(self._backoff(delay, backoff, attempt))
                continue

            return HTTPResponse.from_httpx(resp, elapsed)

        reason = str(last_exc) or type(last_exc).__name__
        raise TransportError(f"failed to execute request: {reason}", attempts=retries + 1)

    @staticmethod
    def _backoff(delay: float, backoff: str, attempt: int) -> float:
        if backoff == "exponential":
            return delay * (2 ** attempt)
        return delay * (attempt + 1)
