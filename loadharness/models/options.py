"""
Run Option Models

Defines Pydantic models for run configuration:
- Executor configurations (constant-vus, ramping-vus, shared-iterations)
- Ramp stages
- Threshold expressions per metric

Field aliases follow k6 option names (startVUs, maxDuration, gracefulStop, ...)
so presets can be written as plain dicts.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from loadharness.config import settings
from loadharness.core.errors import ConfigurationError
from loadharness.core.helpers import parse_duration


class ExecutorKind(str, Enum):
    """Supported virtual-user executors."""

    CONSTANT_VUS = "constant-vus"
    RAMPING_VUS = "ramping-vus"
    SHARED_ITERATIONS = "shared-iterations"


class Stage(BaseModel):
    """One ramp segment: reach `target` VUs over `duration` seconds."""

    model_config = ConfigDict(frozen=True)

    duration: float = Field(..., gt=0, description="Stage duration (seconds)")
    target: int = Field(..., ge=0, description="VU count at the end of the stage")

    @field_validator("duration", mode="before")
    @classmethod
    def _parse_duration(cls, v: Any) -> float:
        return parse_duration(v)


class _ExecutorConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    graceful_stop: float = Field(
        default_factory=lambda: settings.GRACEFUL_STOP_SECONDS,
        ge=0,
        alias="gracefulStop",
        description="Time in-flight iterations get after the executor ends",
    )

    @field_validator("graceful_stop", mode="before")
    @classmethod
    def _parse_graceful_stop(cls, v: Any) -> float:
        return parse_duration(v)


class ConstantVUsConfig(_ExecutorConfig):
    """A fixed number of VUs looping for a fixed duration."""

    executor: Literal["constant-vus"] = "constant-vus"
    vus: int = Field(1, ge=1, description="Concurrent virtual users")
    duration: float = Field(..., gt=0, description="Run time (seconds)")

    @field_validator("duration", mode="before")
    @classmethod
    def _parse_duration(cls, v: Any) -> float:
        return parse_duration(v)

    @property
    def max_vus(self) -> int:
        return self.vus


class RampingVUsConfig(_ExecutorConfig):
    """VU count follows a piecewise-linear schedule of stages."""

    executor: Literal["ramping-vus"] = "ramping-vus"
    start_vus: int = Field(1, ge=0, alias="startVUs")
    stages: List[Stage] = Field(..., description="Ordered ramp stages")
    graceful_ramp_down: float = Field(30.0, ge=0, alias="gracefulRampDown")

    @field_validator("graceful_ramp_down", mode="before")
    @classmethod
    def _parse_ramp_down(cls, v: Any) -> float:
        return parse_duration(v)

    @field_validator("stages")
    @classmethod
    def validate_stages(cls, v: List[Stage]) -> List[Stage]:
        if not v:
            raise ValueError("ramping-vus requires at least one stage")
        return v

    @property
    def total_duration(self) -> float:
        return sum(stage.duration for stage in self.stages)

    @property
    def max_vus(self) -> int:
        return max([self.start_vus] + [stage.target for stage in self.stages])


class SharedIterationsConfig(_ExecutorConfig):
    """A fixed iteration budget shared by up to `vus` workers."""

    executor: Literal["shared-iterations"] = "shared-iterations"
    vus: int = Field(1, ge=1)
    iterations: int = Field(1, ge=1, description="Total iterations across all VUs")
    max_duration: float = Field(600.0, gt=0, alias="maxDuration")

    @field_validator("max_duration", mode="before")
    @classmethod
    def _parse_max_duration(cls, v: Any) -> float:
        return parse_duration(v)

    @model_validator(mode="after")
    def validate_vus_within_budget(self):
        if self.vus > self.iterations:
            raise ValueError(
                f"vus ({self.vus}) must not exceed iterations ({self.iterations})"
            )
        return self

    @property
    def max_vus(self) -> int:
        return self.vus


ScenarioConfig = Annotated[
    Union[ConstantVUsConfig, RampingVUsConfig, SharedIterationsConfig],
    Field(discriminator="executor"),
]


class RunOptions(BaseModel):
    """
    Options for a whole run.

    `scenarios` maps a scenario name to its executor configuration. When it is
    empty the k6 shortcut fields (`vus`, `duration`, `iterations`, `stages`)
    synthesize a single scenario named "default".
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    scenarios: Dict[str, ScenarioConfig] = Field(default_factory=dict)
    thresholds: Dict[str, List[str]] = Field(default_factory=dict)

    # Shortcuts
    vus: Optional[int] = Field(None, ge=1)
    duration: Optional[float] = Field(None, gt=0)
    iterations: Optional[int] = Field(None, ge=1)
    stages: Optional[List[Stage]] = None

    @field_validator("duration", mode="before")
    @classmethod
    def _parse_duration(cls, v: Any) -> Optional[float]:
        if v is None:
            return None
        return parse_duration(v)

    @field_validator("thresholds", mode="before")
    @classmethod
    def _normalize_thresholds(cls, v: Any) -> Any:
        # A single expression string is accepted in place of a list.
        if isinstance(v, dict):
            return {k: [e] if isinstance(e, str) else e for k, e in v.items()}
        return v

    @field_validator("thresholds")
    @classmethod
    def validate_thresholds(cls, v: Dict[str, List[str]]) -> Dict[str, List[str]]:
        from loadharness.core.thresholds import parse_threshold

        for metric, expressions in v.items():
            for expression in expressions:
                parse_threshold(metric, expression)
        return v

    @model_validator(mode="after")
    def apply_shortcuts(self):
        if self.scenarios:
            return self

        if self.stages is not None:
            default: Any = RampingVUsConfig(
                start_vus=self.vus or 1, stages=self.stages
            )
        elif self.duration is not None:
            default = ConstantVUsConfig(vus=self.vus or 1, duration=self.duration)
        else:
            iterations = self.iterations or 1
            default = SharedIterationsConfig(
                vus=min(self.vus or 1, iterations), iterations=iterations
            )
        self.scenarios = {"default": default}
        return self


def build_options(raw: Union[RunOptions, Dict[str, Any], None]) -> RunOptions:
    """
    Validate raw options eagerly.

    Raises:
        ConfigurationError: with pydantic's description of every problem.
    """
    if isinstance(raw, RunOptions):
        return raw
    try:
        return RunOptions.model_validate(raw or {})
    except ValidationError as e:
        raise ConfigurationError(f"invalid run options:\n{e}") from e
