"""
Run and virtual-user context.

`RunContext` is the explicit owner of everything a run shares (metrics, HTTP
client, randomness, stop event). Each worker gets a `VU` value that is passed
into the scenario function on every iteration.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from itertools import count
from typing import Any, Mapping, Optional

from loadharness.core.checks import Predicate, check
from loadharness.core.helpers import random_between, random_int
from loadharness.core.http import HttpClient
from loadharness.core.metrics import MetricsRegistry


class RunContext:
    """State shared by every worker of one run."""

    def __init__(
        self,
        registry: MetricsRegistry,
        http: HttpClient,
        *,
        think_time_scale: float = 1.0,
        rng: Optional[random.Random] = None,
        stop_event: Optional[asyncio.Event] = None,
    ):
        self.registry = registry
        self.http = http
        self.think_time_scale = think_time_scale
        self.rng = rng or random.Random()
        self.stop_event = stop_event or asyncio.Event()
        self._vu_ids = count(1)
        self._active_vus: dict[str, int] = {}
        self._max_vus: dict[str, int] = {}

    def next_vu_id(self) -> int:
        """Run-wide VU number, starting at 1."""
        return next(self._vu_ids)

    @property
    def stopping(self) -> bool:
        return self.stop_event.is_set()

    def set_active_vus(self, scenario: str, active: int) -> None:
        self._active_vus[scenario] = active

    @property
    def active_vus(self) -> int:
        return sum(self._active_vus.values())

    def set_max_vus(self, scenario: str, max_vus: int) -> None:
        self._max_vus[scenario] = max_vus

    @property
    def max_vus(self) -> int:
        """VU capacity of every scenario started so far in this run."""
        return sum(self._max_vus.values())


@dataclass
class VU:
    """
    Identity and helpers for one virtual user.

    Attributes:
        id: Run-wide VU number (1-based)
        worker_index: Index of the worker inside its scenario's pool (0-based)
        scenario: Scenario name
        iteration: Iterations this VU has started (0-based index of the current one)
        scenario_iteration: Scenario-wide iteration index; for shared-iterations
            this is the claimed slot of the budget
    """

    id: int
    worker_index: int
    scenario: str
    run: RunContext
    iteration: int = 0
    scenario_iteration: int = 0
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def http(self) -> HttpClient:
        return self.run.http

    @property
    def metrics(self) -> MetricsRegistry:
        return self.run.registry

    @property
    def rng(self) -> random.Random:
        return self.run.rng

    def check(
        self,
        subject: Any,
        predicates: Mapping[str, Predicate],
        tags: Optional[Mapping[str, str]] = None,
    ) -> bool:
        return check(self.run.registry, subject, predicates, tags=tags)

    async def sleep(self, seconds: float) -> None:
        """
        Think time, scaled by the run's think-time scale.

        Returns early when the run is stopped; the worker loop then declines to
        start another iteration.
        """
        delay = seconds * self.run.think_time_scale
        if delay <= 0 or self.run.stopping:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self.run.stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    def random_int(self, n: int) -> int:
        return random_int(n, self.rng)

    def random_between(self, low: float, high: float) -> float:
        return random_between(low, high, self.rng)
