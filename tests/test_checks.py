"""
Tests for the check evaluator.
"""

import pytest

from loadharness.core.checks import check
from loadharness.core.metrics import CHECKS, MetricsRegistry


def test_mixed_results_give_half_rate(registry: MetricsRegistry) -> None:
    result = check(registry, None, {"a": True, "b": False})

    assert result is False
    assert registry[CHECKS].rate == pytest.approx(0.5)
    assert registry.checks.get("a").passes == 1
    assert registry.checks.get("b").fails == 1


def test_callables_receive_subject(registry: MetricsRegistry) -> None:
    seen = []

    def is_even(value: int) -> bool:
        seen.append(value)
        return value % 2 == 0

    assert check(registry, 4, {"even": is_even, "positive": lambda v: v > 0})
    assert seen == [4]
    assert registry[CHECKS].rate == 1.0


def test_raising_predicate_counts_as_failure(registry: MetricsRegistry) -> None:
    def boom(_):
        raise KeyError("missing")

    result = check(registry, {}, {"has key": boom, "always": True})

    assert result is False
    assert registry.checks.get("has key").fails == 1
    assert registry.checks.get("always").passes == 1


def test_every_predicate_adds_one_sample(registry: MetricsRegistry) -> None:
    for _ in range(3):
        check(registry, None, {"x": True, "y": True, "z": False})

    checks_rate = registry[CHECKS]
    assert checks_rate.total == 9
    assert checks_rate.passes == 6


def test_empty_predicates_pass(registry: MetricsRegistry) -> None:
    assert check(registry, None, {}) is True
    assert registry[CHECKS].total == 0
