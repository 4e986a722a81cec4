"""
Metric Collectors

Counters, gauges, rates and trends shared by every virtual user of a run.

All mutation happens under a per-metric threading.Lock so concurrent adders
(asyncio tasks or OS threads) never lose updates. Aggregates are computed at
read time from the full sample set.
"""

import logging
import re
import threading
from typing import Dict, Iterator, List, Optional, Type, TypeVar

from loadharness.core.errors import MetricRegistryError
from loadharness.models.summary import CheckStats, MetricSummary, MetricType

logger = logging.getLogger(__name__)

_PERCENTILE_RE = re.compile(r"^p\((\d+(?:\.\d+)?)\)$")

# Built-in metric names
HTTP_REQS = "http_reqs"
HTTP_REQ_DURATION = "http_req_duration"
HTTP_REQ_FAILED = "http_req_failed"
HTTP_REQ_ERRORS = "http_req_errors"
DATA_SENT = "data_sent"
DATA_RECEIVED = "data_received"
CHECKS = "checks"
ITERATIONS = "iterations"
ITERATION_DURATION = "iteration_duration"
ITERATION_ERRORS = "iteration_errors"
INTERRUPTED_ITERATIONS = "interrupted_iterations"
VUS = "vus"
VUS_MAX = "vus_max"
HARNESS_CPU_PERCENT = "harness_cpu_percent"
HARNESS_MEMORY_MB = "harness_memory_mb"


def percentile(sorted_values: List[float], p: float) -> float:
    """
    Linear-interpolation percentile of an already sorted, non-empty list.

    Args:
        sorted_values: Ascending sample values
        p: Percentile in [0, 100]
    """
    n = len(sorted_values)
    if n == 0:
        raise ValueError("percentile of empty sample set")
    if not 0 <= p <= 100:
        raise ValueError(f"percentile out of range: {p}")

    k = (n - 1) * (p / 100.0)
    f = int(k)
    c = k - f

    if f + 1 < n:
        return sorted_values[f] * (1 - c) + sorted_values[f + 1] * c
    return sorted_values[f]


def format_percentile(p: float) -> str:
    text = f"{p:.6f}".rstrip("0").rstrip(".")
    return f"p({text})"


class Metric:
    """Base class: a named, lock-protected collector."""

    type: MetricType
    aggregations: tuple = ()

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()

    def supports(self, aggregation: str) -> bool:
        return aggregation in self.aggregations

    def aggregate(
        self, aggregation: str, elapsed_seconds: float = 0.0
    ) -> Optional[float]:
        """Current value of `aggregation`, or None when undefined (no samples)."""
        raise NotImplementedError

    def values(self, elapsed_seconds: float = 0.0) -> Dict[str, Optional[float]]:
        return {
            agg: self.aggregate(agg, elapsed_seconds) for agg in self.aggregations
        }

    def summary(self, elapsed_seconds: float = 0.0) -> MetricSummary:
        return MetricSummary(
            name=self.name, type=self.type, values=self.values(elapsed_seconds)
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r})"


class Counter(Metric):
    """Monotonic running total."""

    type = MetricType.COUNTER
    aggregations = ("count", "rate")

    def __init__(self, name: str):
        super().__init__(name)
        self._total: float = 0

    def add(self, n: float = 1) -> None:
        if n < 0:
            raise ValueError(f"counter {self.name} cannot decrease (add({n}))")
        with self._lock:
            self._total += n

    @property
    def count(self) -> float:
        return self._total

    def aggregate(
        self, aggregation: str, elapsed_seconds: float = 0.0
    ) -> Optional[float]:
        if aggregation == "count":
            return self._total
        if aggregation == "rate":
            return self._total / elapsed_seconds if elapsed_seconds > 0 else 0.0
        return None


class Gauge(Metric):
    """Last-value metric that also remembers its extremes."""

    type = MetricType.GAUGE
    aggregations = ("value", "min", "max")

    def __init__(self, name: str):
        super().__init__(name)
        self._value: Optional[float] = None
        self._min: Optional[float] = None
        self._max: Optional[float] = None

    def add(self, value: float) -> None:
        with self._lock:
            self._value = value
            self._min = value if self._min is None else min(self._min, value)
            self._max = value if self._max is None else max(self._max, value)

    set = add

    @property
    def value(self) -> Optional[float]:
        return self._value

    def aggregate(
        self, aggregation: str, elapsed_seconds: float = 0.0
    ) -> Optional[float]:
        if aggregation == "value":
            return self._value
        if aggregation == "min":
            return self._min
        if aggregation == "max":
            return self._max
        return None


class Rate(Metric):
    """Share of truthy samples: trues / total."""

    type = MetricType.RATE
    aggregations = ("rate", "passes", "fails")

    def __init__(self, name: str):
        super().__init__(name)
        self._passes = 0
        self._total = 0

    def add(self, value: object) -> None:
        with self._lock:
            self._total += 1
            if value:
                self._passes += 1

    @property
    def passes(self) -> int:
        return self._passes

    @property
    def fails(self) -> int:
        return self._total - self._passes

    @property
    def total(self) -> int:
        return self._total

    @property
    def rate(self) -> float:
        with self._lock:
            if self._total == 0:
                return 0.0
            return self._passes / self._total

    def aggregate(
        self, aggregation: str, elapsed_seconds: float = 0.0
    ) -> Optional[float]:
        if aggregation == "rate":
            return self.rate
        if aggregation == "passes":
            return float(self.passes)
        if aggregation == "fails":
            return float(self.fails)
        return None


class Trend(Metric):
    """
    Append-only sample distribution.

    Percentiles use linear interpolation between closest ranks, so p(0) is the
    minimum and p(100) the maximum sample.
    """

    type = MetricType.TREND
    aggregations = ("avg", "min", "med", "max", "p(90)", "p(95)", "count")

    def __init__(self, name: str):
        super().__init__(name)
        self._samples: List[float] = []

    def add(self, value: float) -> None:
        with self._lock:
            self._samples.append(float(value))

    @property
    def count(self) -> int:
        return len(self._samples)

    def _sorted(self) -> List[float]:
        with self._lock:
            return sorted(self._samples)

    def percentile(self, p: float) -> Optional[float]:
        samples = self._sorted()
        if not samples:
            return None
        return percentile(samples, p)

    @property
    def avg(self) -> Optional[float]:
        with self._lock:
            if not self._samples:
                return None
            return sum(self._samples) / len(self._samples)

    @property
    def min(self) -> Optional[float]:
        with self._lock:
            return min(self._samples) if self._samples else None

    @property
    def max(self) -> Optional[float]:
        with self._lock:
            return max(self._samples) if self._samples else None

    @property
    def med(self) -> Optional[float]:
        return self.percentile(50)

    def supports(self, aggregation: str) -> bool:
        return aggregation in self.aggregations or bool(
            _PERCENTILE_RE.match(aggregation)
        )

    def aggregate(
        self, aggregation: str, elapsed_seconds: float = 0.0
    ) -> Optional[float]:
        if aggregation == "count":
            return float(self.count)
        if aggregation == "avg":
            return self.avg
        if aggregation == "min":
            return self.min
        if aggregation == "max":
            return self.max
        if aggregation == "med":
            return self.med
        match = _PERCENTILE_RE.match(aggregation)
        if match:
            return self.percentile(float(match.group(1)))
        return None


class CheckTracker:
    """Per-name pass/fail counts for checks."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stats: Dict[str, List[int]] = {}

    def record(self, name: str, passed: bool) -> None:
        with self._lock:
            entry = self._stats.setdefault(name, [0, 0])
            entry[0 if passed else 1] += 1

    def get(self, name: str) -> CheckStats:
        with self._lock:
            passes, fails = self._stats.get(name, (0, 0))
        return CheckStats(name=name, passes=passes, fails=fails)

    def all(self) -> List[CheckStats]:
        with self._lock:
            items = list(self._stats.items())
        return [CheckStats(name=n, passes=p, fails=f) for n, (p, f) in items]


M = TypeVar("M", bound=Metric)


class MetricsRegistry:
    """
    Run-wide mapping of metric name -> collector.

    Metrics are created while the scenario is being defined; `freeze()` is
    called when the run starts, after which only existing names can be looked
    up.
    """

    def __init__(self) -> None:
        self._metrics: Dict[str, Metric] = {}
        self._lock = threading.Lock()
        self._frozen = False
        self.checks = CheckTracker()

    def _get_or_create(self, name: str, cls: Type[M]) -> M:
        with self._lock:
            existing = self._metrics.get(name)
            if existing is not None:
                if not isinstance(existing, cls):
                    raise MetricRegistryError(
                        f"metric {name!r} already registered as {existing.type.value}"
                    )
                return existing
            if self._frozen:
                raise MetricRegistryError(
                    f"metric {name!r} does not exist and the registry is frozen"
                )
            metric = cls(name)
            self._metrics[name] = metric
            return metric

    def counter(self, name: str) -> Counter:
        return self._get_or_create(name, Counter)

    def gauge(self, name: str) -> Gauge:
        return self._get_or_create(name, Gauge)

    def rate(self, name: str) -> Rate:
        return self._get_or_create(name, Rate)

    def trend(self, name: str) -> Trend:
        return self._get_or_create(name, Trend)

    def get(self, name: str) -> Optional[Metric]:
        return self._metrics.get(name)

    def __getitem__(self, name: str) -> Metric:
        return self._metrics[name]

    def __contains__(self, name: object) -> bool:
        return name in self._metrics

    def __iter__(self) -> Iterator[Metric]:
        return iter(list(self._metrics.values()))

    def __len__(self) -> int:
        return len(self._metrics)

    def names(self) -> List[str]:
        return sorted(self._metrics)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def snapshot(self, elapsed_seconds: float = 0.0) -> Dict[str, MetricSummary]:
        """Current aggregates of every metric, keyed by name."""
        return {
            name: self._metrics[name].summary(elapsed_seconds) for name in self.names()
        }


def register_builtin_metrics(registry: MetricsRegistry) -> MetricsRegistry:
    """Create the metrics every run reports, regardless of scenario."""
    registry.counter(HTTP_REQS)
    registry.trend(HTTP_REQ_DURATION)
    registry.rate(HTTP_REQ_FAILED)
    registry.counter(HTTP_REQ_ERRORS)
    registry.counter(DATA_SENT)
    registry.counter(DATA_RECEIVED)
    registry.rate(CHECKS)
    registry.counter(ITERATIONS)
    registry.trend(ITERATION_DURATION)
    registry.counter(ITERATION_ERRORS)
    registry.counter(INTERRUPTED_ITERATIONS)
    registry.gauge(VUS)
    registry.gauge(VUS_MAX)
    registry.gauge(HARNESS_CPU_PERCENT)
    registry.gauge(HARNESS_MEMORY_MB)
    logger.debug("Registered %d built-in metrics", len(registry))
    return registry
