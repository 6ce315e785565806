"""Shared fixtures for apiscenario tests."""
from __future__ import annotations

import json
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import httpx
import pytest

from apiscenario.config import Settings
from apiscenario.engine import ExecutionEngine
from apiscenario.transport import HTTPResponse, HTTPTransport
from apiscenario.variables import VariableContext


@pytest.fixture
def ctx() -> VariableContext:
    return VariableContext()


@pytest.fixture
def settings(monkeypatch, tmp_path) -> Settings:
    """Settings isolated from any APISCENARIO_* variables or .env in the caller's shell."""
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("APISCENARIO_"):
            monkeypatch.delenv(key, raising=False)
    return Settings()


@pytest.fixture
def make_response():
    """Build an HTTPResponse without going through a transport."""

    def factory(
        payload: Any = None,
        status_code: int = 200,
        text: Optional[str] = None,
        headers: Optional[Dict[str, List[str]]] = None,
        elapsed: float = 0.042,
    ) -> HTTPResponse:
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        body = text.encode("utf-8")
        return HTTPResponse(
            status_code=status_code,
            headers=headers if headers is not None else {"Content-Type": ["application/json"]},
            body=body,
            body_text=text,
            elapsed=elapsed,
            size=len(body),
        )

    return factory


@pytest.fixture
def mock_engine(settings):
    """Async context manager yielding an engine whose HTTP goes to `handler`."""

    @asynccontextmanager
    async def factory(handler, engine_settings: Optional[Settings] = None, **kwargs):
        cfg = engine_settings or settings
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            transport = HTTPTransport(cfg, client=client)
            yield ExecutionEngine(settings=cfg, transport=transport, **kwargs)

    return factory
