"""
Data models for loadharness.

This package contains Pydantic models for:
- Run options (executors, stages, thresholds)
- End-of-run summaries (metrics, checks, threshold verdicts)
"""

from loadharness.models.options import (
    ExecutorKind,
    Stage,
    ConstantVUsConfig,
    RampingVUsConfig,
    SharedIterationsConfig,
    ScenarioConfig,
    RunOptions,
    build_options,
)

from loadharness.models.summary import (
    MetricType,
    RunStatus,
    CheckStats,
    ThresholdVerdict,
    MetricSummary,
    ScenarioSummary,
    RunSummary,
)

__all__ = [
    # options
    "ExecutorKind",
    "Stage",
    "ConstantVUsConfig",
    "RampingVUsConfig",
    "SharedIterationsConfig",
    "ScenarioConfig",
    "RunOptions",
    "build_options",
    # summary
    "MetricType",
    "RunStatus",
    "CheckStats",
    "ThresholdVerdict",
    "MetricSummary",
    "ScenarioSummary",
    "RunSummary",
]
