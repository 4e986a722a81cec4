"""
Tests for metric collectors and the registry.

Covers counter/gauge/rate/trend semantics, linear-interpolation percentiles,
concurrent adders, and registry freezing.
"""

import random
from concurrent.futures import ThreadPoolExecutor

import pytest

from loadharness.core.errors import MetricRegistryError
from loadharness.core.metrics import (
    HTTP_REQ_DURATION,
    HTTP_REQS,
    Counter,
    Gauge,
    MetricsRegistry,
    Rate,
    Trend,
    format_percentile,
    percentile,
    register_builtin_metrics,
)
from loadharness.models.summary import MetricType


def test_percentile_interpolates_between_ranks() -> None:
    values = [10.0, 20.0, 30.0, 40.0]
    assert percentile(values, 0) == 10.0
    assert percentile(values, 100) == 40.0
    assert percentile(values, 50) == pytest.approx(25.0)
    # k = 3 * 0.9 = 2.7 -> 30 + 0.7 * 10
    assert percentile(values, 90) == pytest.approx(37.0)


def test_percentile_single_value() -> None:
    assert percentile([7.0], 95) == 7.0


def test_percentile_rejects_empty_and_out_of_range() -> None:
    with pytest.raises(ValueError):
        percentile([], 50)
    with pytest.raises(ValueError):
        percentile([1.0], 101)


def test_format_percentile() -> None:
    assert format_percentile(95) == "p(95)"
    assert format_percentile(99.9) == "p(99.9)"
    assert format_percentile(0.5) == "p(0.5)"


class TestCounter:
    def test_counts_and_rate(self) -> None:
        counter = Counter("orders")
        counter.add()
        counter.add(4)

        assert counter.count == 5
        assert counter.aggregate("count") == 5
        assert counter.aggregate("rate", elapsed_seconds=2.0) == 2.5
        assert counter.aggregate("rate", elapsed_seconds=0) == 0.0

    def test_rejects_negative(self) -> None:
        counter = Counter("orders")
        with pytest.raises(ValueError):
            counter.add(-1)
        assert counter.count == 0

    def test_concurrent_adders_lose_nothing(self) -> None:
        counter = Counter("hits")

        def add_many() -> None:
            for _ in range(1000):
                counter.add(1)

        with ThreadPoolExecutor(max_workers=8) as pool:
            for _ in range(8):
                pool.submit(add_many)

        assert counter.count == 8000


class TestGauge:
    def test_tracks_last_min_max(self) -> None:
        gauge = Gauge("vus")
        assert gauge.aggregate("value") is None

        for v in (3, 10, 1, 4):
            gauge.add(v)

        assert gauge.value == 4
        assert gauge.aggregate("min") == 1
        assert gauge.aggregate("max") == 10


class TestRate:
    def test_ratio_of_truthy_samples(self) -> None:
        rate = Rate("http_req_failed")
        for value in (True, False, False, 1, 0, None):
            rate.add(value)

        assert rate.total == 6
        assert rate.passes == 2
        assert rate.fails == 4
        assert rate.rate == pytest.approx(2 / 6)

    def test_empty_rate_is_zero(self) -> None:
        assert Rate("checks").rate == 0.0

    def test_concurrent_adders(self) -> None:
        rate = Rate("checks")

        def add_many(flag: bool) -> None:
            for _ in range(500):
                rate.add(flag)

        with ThreadPoolExecutor(max_workers=4) as pool:
            for flag in (True, True, False, False):
                pool.submit(add_many, flag)

        assert rate.total == 2000
        assert rate.rate == pytest.approx(0.5)


class TestTrend:
    def test_aggregations(self) -> None:
        trend = Trend("latency")
        for v in (5, 1, 4, 2, 3):
            trend.add(v)

        assert trend.count == 5
        assert trend.avg == pytest.approx(3.0)
        assert trend.min == 1
        assert trend.max == 5
        assert trend.med == pytest.approx(3.0)
        assert trend.aggregate("p(0)") == 1
        assert trend.aggregate("p(100)") == 5

    def test_p0_and_p100_match_min_and_max(self) -> None:
        trend = Trend("latency")
        rng = random.Random(7)
        for _ in range(200):
            trend.add(rng.uniform(0, 1000))

        assert trend.percentile(0) == trend.min
        assert trend.percentile(100) == trend.max
        assert trend.min <= trend.percentile(95) <= trend.max

    def test_empty_trend_is_undefined(self) -> None:
        trend = Trend("latency")
        assert trend.avg is None
        assert trend.aggregate("p(95)") is None
        assert trend.aggregate("count") == 0

    def test_supports_arbitrary_percentiles(self) -> None:
        trend = Trend("latency")
        assert trend.supports("p(99.9)")
        assert trend.supports("avg")
        assert not trend.supports("rate")


class TestMetricsRegistry:
    def test_get_or_create_returns_same_instance(self) -> None:
        registry = MetricsRegistry()
        assert registry.counter("orders") is registry.counter("orders")
        assert "orders" in registry
        assert len(registry) == 1

    def test_type_conflict(self) -> None:
        registry = MetricsRegistry()
        registry.counter("orders")
        with pytest.raises(MetricRegistryError):
            registry.trend("orders")

    def test_frozen_registry_rejects_new_names(self) -> None:
        registry = MetricsRegistry()
        registry.trend("order_creation_duration")
        registry.freeze()

        assert registry.frozen
        assert registry.trend("order_creation_duration") is not None
        with pytest.raises(MetricRegistryError):
            registry.counter("late_metric")

    def test_builtin_metrics(self) -> None:
        registry = register_builtin_metrics(MetricsRegistry())

        assert registry[HTTP_REQS].type == MetricType.COUNTER
        assert registry[HTTP_REQ_DURATION].type == MetricType.TREND
        for name in (
            "http_req_failed",
            "checks",
            "iterations",
            "iteration_duration",
            "vus",
            "vus_max",
            "data_sent",
            "data_received",
        ):
            assert name in registry

    def test_snapshot(self) -> None:
        registry = MetricsRegistry()
        registry.counter("orders").add(10)
        registry.trend("latency").add(12.5)

        snapshot = registry.snapshot(elapsed_seconds=5.0)

        assert snapshot["orders"].values["count"] == 10
        assert snapshot["orders"].values["rate"] == 2.0
        assert snapshot["latency"].values["p(95)"] == 12.5

    def test_checks_tracker(self) -> None:
        registry = MetricsRegistry()
        registry.checks.record("status is 200", True)
        registry.checks.record("status is 200", False)

        stats = registry.checks.get("status is 200")
        assert stats.passes == 1
        assert stats.fails == 1
        assert stats.rate == 0.5
