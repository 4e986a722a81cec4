"""
Run summary: build, render and export.

`build_summary` freezes the registry state into a `RunSummary` model with the
threshold results attached to their metrics. The text rendering mirrors the
familiar end-of-test console block; the JSON export is `model_dump(mode="json")`.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Union

from loadharness.core.metrics import MetricsRegistry
from loadharness.models.summary import (
    MetricType,
    RunStatus,
    RunSummary,
    ScenarioSummary,
    ThresholdVerdict,
)

logger = logging.getLogger(__name__)

_DURATION_METRIC_SUFFIX = "_duration"
_BYTES_METRICS = {"data_sent", "data_received"}


def build_summary(
    scenario: str,
    registry: MetricsRegistry,
    verdicts: Iterable[ThresholdVerdict],
    *,
    started_at: datetime,
    ended_at: datetime,
    duration_seconds: float,
    scenarios: Optional[Iterable[ScenarioSummary]] = None,
    interrupted: bool = False,
) -> RunSummary:
    """
    Assemble the final summary.

    Status is INTERRUPTED if the run was stopped early, otherwise PASSED or
    FAILED depending on the thresholds.
    """
    verdict_list = list(verdicts)
    metrics = registry.snapshot(duration_seconds)
    for verdict in verdict_list:
        entry = metrics.get(verdict.metric)
        if entry is not None:
            entry.thresholds[verdict.expression] = verdict.passed

    if interrupted:
        status = RunStatus.INTERRUPTED
    elif all(v.passed for v in verdict_list):
        status = RunStatus.PASSED
    else:
        status = RunStatus.FAILED

    return RunSummary(
        scenario=scenario,
        status=status,
        started_at=started_at,
        ended_at=ended_at,
        duration_seconds=duration_seconds,
        metrics=metrics,
        checks=registry.checks.all(),
        thresholds=verdict_list,
        scenarios=list(scenarios or []),
    )


def _format_value(metric: str, metric_type: MetricType, key: str, value: Optional[float]) -> str:
    if value is None:
        return f"{key}=n/a"
    if metric_type == MetricType.RATE:
        if key == "rate":
            return f"{value * 100:.2f}%"
        return f"{key}={value:g}"
    if metric_type == MetricType.TREND and key != "count":
        if metric.endswith(_DURATION_METRIC_SUFFIX):
            return f"{key}={value:.2f}ms"
        return f"{key}={value:.2f}"
    if metric in _BYTES_METRICS and key == "count":
        return f"{value / 1024:.1f} kB"
    if key == "rate":
        return f"{value:.2f}/s"
    return f"{key}={value:g}"


def render_text_summary(summary: RunSummary) -> str:
    """Human-readable summary block."""
    lines: List[str] = []
    lines.append("=" * 60)
    lines.append(f"  {summary.scenario}: {summary.status.value.upper()}")
    lines.append(f"  duration: {summary.duration_seconds:.1f}s")
    lines.append("=" * 60)

    if summary.checks:
        lines.append("")
        for stats in summary.checks:
            mark = "✓" if stats.fails == 0 else "✗"
            lines.append(
                f"  {mark} {stats.name}: {stats.rate * 100:.1f}% "
                f"({stats.passes} passed / {stats.fails} failed)"
            )

    lines.append("")
    width = max((len(name) for name in summary.metrics), default=0)
    for name, metric in summary.metrics.items():
        if metric.type == MetricType.COUNTER and not metric.values.get("count"):
            continue
        if metric.type == MetricType.GAUGE and metric.values.get("value") is None:
            continue
        if metric.type == MetricType.RATE and not (
            (metric.values.get("passes") or 0) + (metric.values.get("fails") or 0)
        ):
            continue
        if metric.type == MetricType.TREND and not metric.values.get("count"):
            continue

        if metric.thresholds:
            marker = "✓" if all(metric.thresholds.values()) else "✗"
        else:
            marker = " "
        if metric.type == MetricType.RATE:
            keys = ["rate", "passes", "fails"]
        elif metric.type == MetricType.TREND:
            keys = ["avg", "min", "med", "max", "p(90)", "p(95)"]
        else:
            keys = list(metric.values)
        rendered = " ".join(
            _format_value(name, metric.type, k, metric.values.get(k)) for k in keys
        )
        lines.append(f"  {marker} {name.ljust(width)} {rendered}")

    if summary.thresholds:
        lines.append("")
        lines.append("  thresholds:")
        for verdict in summary.thresholds:
            mark = "✓" if verdict.passed else "✗"
            detail = f" ({verdict.reason})" if verdict.reason else ""
            lines.append(f"    {mark} {verdict.metric}: {verdict.expression}{detail}")

    for scenario in summary.scenarios:
        lines.append("")
        lines.append(
            f"  scenario {scenario.name} [{scenario.executor}]: "
            f"{scenario.iterations_completed} complete, "
            f"{scenario.iterations_interrupted} interrupted, "
            f"max {scenario.max_active_vus} VUs"
        )

    return "\n".join(lines)


def export_summary(summary: RunSummary, path: Union[str, Path]) -> Path:
    """Write the summary as JSON; parent directories are created."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with open(out, "w", encoding="utf-8") as f:
        json.dump(summary.model_dump(mode="json"), f, indent=2)
    logger.info("📄 Summary written to %s", out)
    return out
