"""
Threshold Evaluator

Parses pass/fail expressions such as ``rate<0.01``, ``p(95)<200`` or
``count>=1`` and evaluates them against the aggregated metrics of a run.
"""

from __future__ import annotations

import logging
import operator
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping

from loadharness.core.errors import ThresholdSyntaxError
from loadharness.core.metrics import MetricsRegistry, format_percentile
from loadharness.models.summary import ThresholdVerdict

logger = logging.getLogger(__name__)

_EXPRESSION_RE = re.compile(
    r"""^\s*
    (?P<agg>count|rate|value|avg|min|max|med|p\(\s*(?P<pct>\d+(?:\.\d+)?)\s*\))
    \s*(?P<op>===|==|!=|<=|>=|<|>)\s*
    (?P<bound>[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?)
    \s*$""",
    re.VERBOSE,
)

OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "===": operator.eq,
    "!=": operator.ne,
}


@dataclass(frozen=True)
class ThresholdExpression:
    """One parsed threshold: `<aggregation> <operator> <bound>` on a metric."""

    metric: str
    source: str
    aggregation: str
    operator: str
    bound: float

    def compare(self, observed: float) -> bool:
        return OPERATORS[self.operator](observed, self.bound)


def parse_threshold(metric: str, expression: str) -> ThresholdExpression:
    """
    Parse a threshold expression for `metric`.

    Raises:
        ThresholdSyntaxError: if the metric name is empty or the expression
            does not match `<aggregation> <op> <number>`.
    """
    if not metric or not metric.strip():
        raise ThresholdSyntaxError(metric, expression, "empty metric name")
    if not isinstance(expression, str):
        raise ThresholdSyntaxError(metric, str(expression), "expression must be a string")

    match = _EXPRESSION_RE.match(expression)
    if not match:
        raise ThresholdSyntaxError(
            metric, expression, "expected <aggregation><op><number>"
        )

    aggregation = match.group("agg")
    pct = match.group("pct")
    if pct is not None:
        p = float(pct)
        if p > 100:
            raise ThresholdSyntaxError(metric, expression, "percentile above 100")
        aggregation = format_percentile(p)

    return ThresholdExpression(
        metric=metric.strip(),
        source=expression,
        aggregation=aggregation,
        operator=match.group("op"),
        bound=float(match.group("bound")),
    )


def parse_thresholds(
    thresholds: Mapping[str, Iterable[str]],
) -> list[ThresholdExpression]:
    return [
        parse_threshold(metric, expression)
        for metric, expressions in thresholds.items()
        for expression in expressions
    ]


def evaluate_threshold(
    registry: MetricsRegistry,
    threshold: ThresholdExpression,
    elapsed_seconds: float = 0.0,
) -> ThresholdVerdict:
    metric = registry.get(threshold.metric)
    if metric is None:
        return ThresholdVerdict(
            metric=threshold.metric,
            expression=threshold.source,
            passed=False,
            reason="metric not found",
        )

    if not metric.supports(threshold.aggregation):
        return ThresholdVerdict(
            metric=threshold.metric,
            expression=threshold.source,
            passed=False,
            reason=f"{threshold.aggregation} is not defined for a {metric.type.value} metric",
        )

    observed = metric.aggregate(threshold.aggregation, elapsed_seconds)
    if observed is None:
        return ThresholdVerdict(
            metric=threshold.metric,
            expression=threshold.source,
            passed=False,
            reason="no samples recorded",
        )

    passed = threshold.compare(observed)
    return ThresholdVerdict(
        metric=threshold.metric,
        expression=threshold.source,
        passed=passed,
        observed=observed,
        reason=None if passed else f"observed {observed:g}",
    )


def evaluate_thresholds(
    registry: MetricsRegistry,
    thresholds: Mapping[str, Iterable[str]] | Iterable[ThresholdExpression],
    elapsed_seconds: float = 0.0,
) -> list[ThresholdVerdict]:
    """
    Evaluate every threshold; one verdict per expression, in configured order.

    A missing metric, an aggregation the metric does not support, or an empty
    trend all produce an unmet verdict rather than an error.
    """
    if isinstance(thresholds, Mapping):
        parsed = parse_thresholds(thresholds)
    else:
        parsed = list(thresholds)

    verdicts = [evaluate_threshold(registry, t, elapsed_seconds) for t in parsed]
    for verdict in verdicts:
        if verdict.passed:
            logger.debug("Threshold %s %s passed", verdict.metric, verdict.expression)
        else:
            logger.warning(
                "Threshold %s %s failed: %s",
                verdict.metric,
                verdict.expression,
                verdict.reason,
            )
    return verdicts
