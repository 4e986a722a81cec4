"""
Error types and transport failure classification.

Goal: keep network failures (refused connections, timeouts) from surfacing as
exceptions inside scenario code, while still telling the operator *why* a
request failed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum

import httpx

logger = logging.getLogger(__name__)


class LoadHarnessError(Exception):
    """Base class for harness errors."""


class ConfigurationError(LoadHarnessError, ValueError):
    """Invalid run configuration; reported before any worker starts."""


class ThresholdSyntaxError(ConfigurationError):
    """A threshold expression could not be parsed."""

    def __init__(self, metric: str, expression: str, reason: str):
        self.metric = metric
        self.expression = expression
        self.reason = reason
        super().__init__(f"invalid threshold {metric}: {expression!r} ({reason})")


class MetricRegistryError(LoadHarnessError):
    """Metric created after the registry was frozen, or with a conflicting type."""


class ExitCode(IntEnum):
    """Process exit codes (k6-compatible where k6 defines one)."""

    OK = 0
    THRESHOLDS_FAILED = 99
    INVALID_CONFIG = 104
    INTERRUPTED = 130


@dataclass(frozen=True, slots=True)
class TransportError:
    code: str
    message: str


def classify_transport_error(exc: BaseException) -> TransportError:
    """
    Classify an httpx transport failure into a short, stable error code.

    Order matters: ConnectTimeout is both a timeout and a connect error and is
    reported as TIMEOUT.
    """
    msg = str(exc) or exc.__class__.__name__
    lower = msg.lower()

    if isinstance(exc, httpx.TimeoutException):
        return TransportError(code="TIMEOUT", message=msg)

    if isinstance(exc, httpx.ConnectError):
        if "refused" in lower or "errno 111" in lower or "errno 61" in lower:
            return TransportError(code="CONNECTION_REFUSED", message=msg)
        return TransportError(code="CONNECT_ERROR", message=msg)

    if isinstance(exc, (httpx.ProtocolError, httpx.UnsupportedProtocol)):
        return TransportError(code="PROTOCOL_ERROR", message=msg)

    return TransportError(code="TRANSPORT_ERROR", message=msg)
