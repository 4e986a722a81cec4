"""
Global pytest configuration and fixtures for loadharness tests.

This module provides:
- A metrics registry with the built-in metrics
- httpx.MockTransport helpers standing in for the server under test
- A RunContext wired to a mock transport
- Fast timing settings so executor tests finish in well under a second
"""

from __future__ import annotations

import json
import random
from typing import AsyncGenerator, Callable

import httpx
import pytest
import pytest_asyncio

from loadharness.config import settings
from loadharness.core.context import RunContext
from loadharness.core.http import HttpClient
from loadharness.core.metrics import MetricsRegistry, register_builtin_metrics

BASE_URL = "http://testserver"

Handler = Callable[[httpx.Request], httpx.Response]


def json_response(status: int, payload: object) -> httpx.Response:
    return httpx.Response(
        status,
        content=json.dumps(payload).encode(),
        headers={"Content-Type": "application/json"},
    )


def ok_handler(request: httpx.Request) -> httpx.Response:
    return json_response(200, {"ok": True})


@pytest.fixture
def registry() -> MetricsRegistry:
    return register_builtin_metrics(MetricsRegistry())


@pytest.fixture(autouse=True)
def fast_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    """Shrink ticks and sampling intervals for every test."""
    monkeypatch.setattr(settings, "RAMP_TICK_SECONDS", 0.01)
    monkeypatch.setattr(settings, "METRICS_SAMPLE_INTERVAL_SECONDS", 0.05)
    monkeypatch.setattr(settings, "SUMMARY_EXPORT", None)


@pytest.fixture
def mock_transport() -> httpx.MockTransport:
    return httpx.MockTransport(ok_handler)


@pytest_asyncio.fixture
async def http_client(
    registry: MetricsRegistry, mock_transport: httpx.MockTransport
) -> AsyncGenerator[HttpClient, None]:
    client = HttpClient(registry, BASE_URL, transport=mock_transport)
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def run_context(
    registry: MetricsRegistry, http_client: HttpClient
) -> AsyncGenerator[RunContext, None]:
    yield RunContext(
        registry, http_client, think_time_scale=0.0, rng=random.Random(1234)
    )
