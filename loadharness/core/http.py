"""
HTTP client used by virtual users.

Thin wrapper around httpx.AsyncClient that records the built-in request
metrics and turns transport failures into status-0 responses instead of
exceptions. No retries are performed.
"""

from __future__ import annotations

import json as jsonlib
import logging
from dataclasses import dataclass, field
from typing import Any, Collection, Mapping, Optional

import httpx

from loadharness.core.errors import classify_transport_error
from loadharness.core.helpers import elapsed_ms, now_mono
from loadharness.core.metrics import (
    DATA_RECEIVED,
    DATA_SENT,
    HTTP_REQ_DURATION,
    HTTP_REQ_ERRORS,
    HTTP_REQ_FAILED,
    HTTP_REQS,
    MetricsRegistry,
)

logger = logging.getLogger(__name__)

DEFAULT_EXPECTED_STATUSES: Collection[int] = range(200, 400)

_MISSING = object()


def _select(data: Any, selector: str) -> Any:
    """Follow a dotted path ("content.0.id") through dicts and lists."""
    current = data
    for part in selector.split("."):
        if isinstance(current, Mapping):
            current = current.get(part, _MISSING)
        elif isinstance(current, list):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                current = _MISSING
        else:
            current = _MISSING
        if current is _MISSING:
            return None
    return current


@dataclass
class Response:
    """What a scenario sees of one HTTP exchange."""

    method: str
    url: str
    status: int
    body: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    duration_ms: float = 0.0
    error: Optional[str] = None
    error_code: Optional[str] = None
    expected: bool = False
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return not self.expected

    def json(self, selector: Optional[str] = None) -> Any:
        """
        Decode the body as JSON.

        Args:
            selector: Optional dotted path into the document; a missing path
                yields None.

        Raises:
            ValueError: if the body is not valid JSON.
        """
        data = jsonlib.loads(self.body)
        if selector is None:
            return data
        return _select(data, selector)


class HttpClient:
    """
    Async HTTP client bound to one run's metrics registry.

    Every request adds to ``http_reqs``, ``http_req_duration``,
    ``http_req_failed``, ``data_sent`` and ``data_received``. A request counts
    as failed when it gets no response or its status is not in
    `expected_statuses` (200-399 unless overridden).
    """

    def __init__(
        self,
        registry: MetricsRegistry,
        base_url: str = "",
        *,
        timeout: float = 60.0,
        headers: Optional[Mapping[str, str]] = None,
        expected_statuses: Optional[Collection[int]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.registry = registry
        self.base_url = base_url
        self.expected_statuses = expected_statuses or DEFAULT_EXPECTED_STATUSES
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers=dict(headers or {}),
            transport=transport,
        )

        self._reqs = registry.counter(HTTP_REQS)
        self._duration = registry.trend(HTTP_REQ_DURATION)
        self._failed = registry.rate(HTTP_REQ_FAILED)
        self._errors = registry.counter(HTTP_REQ_ERRORS)
        self._sent = registry.counter(DATA_SENT)
        self._received = registry.counter(DATA_RECEIVED)

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        tags: Optional[Mapping[str, str]] = None,
        expected_statuses: Optional[Collection[int]] = None,
    ) -> Response:
        method = method.upper()
        expected_statuses = expected_statuses or self.expected_statuses
        tag_dict = dict(tags or {})
        start = now_mono()

        try:
            resp = await self._client.request(
                method, url, params=params, json=json, headers=headers
            )
        except httpx.TransportError as e:
            duration = elapsed_ms(start)
            err = classify_transport_error(e)
            self._reqs.add(1)
            self._failed.add(True)
            self._errors.add(1)
            logger.debug("%s %s failed after %.1fms: %s", method, url, duration, err.code)
            return Response(
                method=method,
                url=url,
                status=0,
                duration_ms=duration,
                error=err.message,
                error_code=err.code,
                expected=False,
                tags=tag_dict,
            )

        duration = elapsed_ms(start)
        expected = resp.status_code in expected_statuses

        self._reqs.add(1)
        self._duration.add(duration)
        self._failed.add(not expected)
        self._sent.add(len(resp.request.content))
        self._received.add(len(resp.content))

        return Response(
            method=method,
            url=str(resp.request.url),
            status=resp.status_code,
            body=resp.text,
            headers=dict(resp.headers),
            duration_ms=duration,
            expected=expected,
            tags=tag_dict,
        )

    async def get(self, url: str, **kwargs: Any) -> Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> Response:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> Response:
        return await self.request("PUT", url, **kwargs)

    async def patch(self, url: str, **kwargs: Any) -> Response:
        return await self.request("PATCH", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> Response:
        return await self.request("DELETE", url, **kwargs)
