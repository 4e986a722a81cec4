"""
Tests for threshold parsing and evaluation.
"""

import pytest

from loadharness.core.errors import ConfigurationError, ThresholdSyntaxError
from loadharness.core.metrics import HTTP_REQ_DURATION, HTTP_REQ_FAILED, MetricsRegistry
from loadharness.core.thresholds import (
    evaluate_threshold,
    evaluate_thresholds,
    parse_threshold,
    parse_thresholds,
)


class TestParseThreshold:
    @pytest.mark.parametrize(
        "expression, aggregation, op, bound",
        [
            ("rate<0.01", "rate", "<", 0.01),
            ("p(95)<200", "p(95)", "<", 200.0),
            ("p( 99.9 ) <= 1500", "p(99.9)", "<=", 1500.0),
            ("count>=1", "count", ">=", 1.0),
            ("avg == 3", "avg", "==", 3.0),
            ("max!=0", "max", "!=", 0.0),
            ("value>-1", "value", ">", -1.0),
            ("med<1e3", "med", "<", 1000.0),
        ],
    )
    def test_valid_expressions(self, expression, aggregation, op, bound) -> None:
        parsed = parse_threshold("m", expression)
        assert parsed.aggregation == aggregation
        assert parsed.operator == op
        assert parsed.bound == bound
        assert parsed.source == expression

    @pytest.mark.parametrize(
        "expression",
        ["", "p95<200", "rate<", "rate ~ 0.1", "p(101)<5", "total<3", "rate<0.01 extra"],
    )
    def test_invalid_expressions(self, expression) -> None:
        with pytest.raises(ThresholdSyntaxError) as exc_info:
            parse_threshold("http_req_failed", expression)
        assert exc_info.value.metric == "http_req_failed"

    def test_syntax_error_is_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError):
            parse_threshold("", "rate<1")

    def test_parse_thresholds_flattens_in_order(self) -> None:
        parsed = parse_thresholds(
            {"http_req_duration": ["p(95)<500", "avg<200"], "checks": ["rate>0.99"]}
        )
        assert [(t.metric, t.source) for t in parsed] == [
            ("http_req_duration", "p(95)<500"),
            ("http_req_duration", "avg<200"),
            ("checks", "rate>0.99"),
        ]


class TestEvaluateThresholds:
    def _record_failures(self, registry: MetricsRegistry, failures: int) -> None:
        failed = registry.rate(HTTP_REQ_FAILED)
        for i in range(1000):
            failed.add(i < failures)

    def test_failure_rate_under_bound_passes(self, registry: MetricsRegistry) -> None:
        self._record_failures(registry, 5)

        verdicts = evaluate_thresholds(registry, {HTTP_REQ_FAILED: ["rate<0.01"]})

        assert len(verdicts) == 1
        assert verdicts[0].passed
        assert verdicts[0].observed == pytest.approx(0.005)

    def test_failure_rate_over_bound_fails(self, registry: MetricsRegistry) -> None:
        self._record_failures(registry, 15)

        verdicts = evaluate_thresholds(registry, {HTTP_REQ_FAILED: ["rate<0.01"]})

        assert not verdicts[0].passed
        assert verdicts[0].observed == pytest.approx(0.015)
        assert verdicts[0].reason.startswith("observed")

    def test_percentile_threshold(self, registry: MetricsRegistry) -> None:
        trend = registry.trend(HTTP_REQ_DURATION)
        for v in range(1, 101):
            trend.add(float(v))

        passed, failed = evaluate_thresholds(
            registry, {HTTP_REQ_DURATION: ["p(95)<100", "p(95)<90"]}
        )

        assert passed.passed
        assert not failed.passed

    def test_missing_metric_is_unmet(self, registry: MetricsRegistry) -> None:
        verdict = evaluate_threshold(
            registry, parse_threshold("successful_coupon_issues", "count>=1")
        )
        assert not verdict.passed
        assert verdict.reason == "metric not found"

    def test_empty_trend_is_unmet(self, registry: MetricsRegistry) -> None:
        verdicts = evaluate_thresholds(registry, {HTTP_REQ_DURATION: ["p(95)<200"]})
        assert not verdicts[0].passed
        assert verdicts[0].reason == "no samples recorded"

    def test_unsupported_aggregation_is_unmet(self, registry: MetricsRegistry) -> None:
        verdicts = evaluate_thresholds(registry, {HTTP_REQ_FAILED: ["p(95)<1"]})
        assert not verdicts[0].passed
        assert "not defined" in verdicts[0].reason

    def test_counter_count_threshold(self, registry: MetricsRegistry) -> None:
        registry.counter("successful_coupon_issues").add(100)
        verdicts = evaluate_thresholds(registry, {"successful_coupon_issues": ["count>=1"]})
        assert verdicts[0].passed
        assert verdicts[0].observed == 100

    def test_counter_rate_uses_elapsed(self, registry: MetricsRegistry) -> None:
        registry.counter("orders").add(50)
        verdicts = evaluate_thresholds(
            registry, {"orders": ["rate>=10"]}, elapsed_seconds=5.0
        )
        assert verdicts[0].passed
        assert verdicts[0].observed == 10.0

    def test_accepts_parsed_expressions(self, registry: MetricsRegistry) -> None:
        registry.rate(HTTP_REQ_FAILED).add(False)
        verdicts = evaluate_thresholds(
            registry, [parse_threshold(HTTP_REQ_FAILED, "rate==0")]
        )
        assert verdicts[0].passed
