"""
Scenario definition.

A scenario bundles run options, the async iteration function every VU loops
over, and optional hooks for defining custom metrics and reporting.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from loadharness.models.options import RunOptions

if TYPE_CHECKING:
    from loadharness.core.context import VU
    from loadharness.core.metrics import MetricsRegistry
    from loadharness.models.summary import RunSummary


IterationFn = Callable[["VU"], Awaitable[None]]


@dataclass
class Scenario:
    name: str
    default: IterationFn
    options: RunOptions = field(default_factory=RunOptions)
    description: str = ""
    define_metrics: Optional[Callable[["MetricsRegistry"], None]] = None
    handle_summary: Optional[Callable[["RunSummary"], None]] = None
