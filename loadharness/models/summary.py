"""
Summary Models

Defines Pydantic models for the end-of-run summary:
- Per-metric aggregates
- Per-check pass/fail breakdown
- Threshold verdicts and overall run status
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class MetricType(str, Enum):
    """Metric kinds held by the registry."""

    COUNTER = "counter"
    GAUGE = "gauge"
    RATE = "rate"
    TREND = "trend"


class RunStatus(str, Enum):
    """Run outcome."""

    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"


class CheckStats(BaseModel):
    """Pass/fail counts for one named check."""

    name: str
    passes: int = Field(0, ge=0)
    fails: int = Field(0, ge=0)

    @property
    def total(self) -> int:
        return self.passes + self.fails

    @property
    def rate(self) -> float:
        """Pass rate (0.0-1.0)."""
        if self.total == 0:
            return 0.0
        return self.passes / self.total


class ThresholdVerdict(BaseModel):
    """Outcome of one threshold expression."""

    metric: str = Field(..., description="Metric the expression refers to")
    expression: str = Field(..., description="Expression as configured, e.g. p(95)<200")
    passed: bool
    observed: Optional[float] = Field(None, description="Aggregated value compared")
    reason: Optional[str] = Field(None, description="Why the threshold is unmet")


class MetricSummary(BaseModel):
    """Final aggregate values for one metric (None where undefined)."""

    name: str
    type: MetricType
    values: Dict[str, Optional[float]] = Field(default_factory=dict)
    thresholds: Dict[str, bool] = Field(
        default_factory=dict, description="expression -> passed"
    )


class ScenarioSummary(BaseModel):
    """Execution statistics for one scenario/executor."""

    name: str
    executor: str
    iterations_completed: int = 0
    iterations_interrupted: int = 0
    max_active_vus: int = 0


class RunSummary(BaseModel):
    """
    Structured summary of a finished run.

    Serializable with `model_dump(mode="json")`; this is what
    `--summary-export` writes and what `handle_summary` hooks receive.
    """

    scenario: str = Field(..., description="Scenario (test) name")
    status: RunStatus = RunStatus.PENDING
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    ended_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    metrics: Dict[str, MetricSummary] = Field(default_factory=dict)
    checks: List[CheckStats] = Field(default_factory=list)
    thresholds: List[ThresholdVerdict] = Field(default_factory=list)
    scenarios: List[ScenarioSummary] = Field(default_factory=list)

    @property
    def thresholds_passed(self) -> bool:
        return all(v.passed for v in self.thresholds)

    def metric_value(self, metric: str, key: str, default: float = 0.0) -> float:
        """Convenience accessor: summary.metric_value("orders", "count")."""
        summary = self.metrics.get(metric)
        if summary is None:
            return default
        value = summary.values.get(key)
        return default if value is None else value
