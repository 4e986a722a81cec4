"""
Virtual-user executors.

Each executor drives one scenario's iteration function under a concurrency
policy:
- constant-vus: N workers looping for a fixed duration
- ramping-vus: worker count follows piecewise-linear stages
- shared-iterations: a fixed iteration budget claimed by up to N workers

Workers only look at stop signals between iterations; an in-flight iteration
is never interrupted except by the graceful-stop deadline.
"""

from __future__ import annotations

import asyncio
import logging
import math
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from itertools import count
from typing import Optional, Sequence, Union

from loadharness.core.checks import check
from loadharness.core.context import VU, RunContext
from loadharness.core.helpers import elapsed_ms, format_duration, now_mono
from loadharness.core.metrics import (
    INTERRUPTED_ITERATIONS,
    ITERATION_DURATION,
    ITERATION_ERRORS,
    ITERATIONS,
    VUS,
    VUS_MAX,
)
from loadharness.core.scenario import IterationFn
from loadharness.core.worker_pool import WorkerPool
from loadharness.models.options import (
    ConstantVUsConfig,
    ExecutorKind,
    RampingVUsConfig,
    SharedIterationsConfig,
    Stage,
)
from loadharness.models.summary import ScenarioSummary

logger = logging.getLogger(__name__)

ITERATION_FAILED_CHECK = "iteration completed"

ExecutorConfig = Union[ConstantVUsConfig, RampingVUsConfig, SharedIterationsConfig]


@dataclass
class ExecutorResult:
    """What one executor did."""

    scenario: str
    executor: str
    iterations_completed: int = 0
    iterations_interrupted: int = 0
    per_worker_iterations: dict[int, int] = field(default_factory=dict)
    max_active_vus: int = 0
    abandoned_workers: int = 0

    def to_summary(self) -> ScenarioSummary:
        return ScenarioSummary(
            name=self.scenario,
            executor=self.executor,
            iterations_completed=self.iterations_completed,
            iterations_interrupted=self.iterations_interrupted,
            max_active_vus=self.max_active_vus,
        )


class IterationBudget:
    """Hands out iteration indices 0..total-1, each exactly once."""

    def __init__(self, total: int):
        if total < 0:
            raise ValueError("total must be >= 0")
        self.total = total
        self._next = 0
        self._lock = threading.Lock()

    def claim(self) -> Optional[int]:
        with self._lock:
            if self._next >= self.total:
                return None
            index = self._next
            self._next += 1
            return index

    @property
    def claimed(self) -> int:
        return self._next

    @property
    def remaining(self) -> int:
        return self.total - self._next


def target_vus_at(start_vus: int, stages: Sequence[Stage], elapsed: float) -> float:
    """
    Interpolated VU target `elapsed` seconds into a ramping schedule.

    Within a stage the target moves linearly from the previous stage's target
    (or `start_vus` for the first stage) to the stage's own target. Past the
    last stage the final target is returned.
    """
    previous = float(start_vus)
    stage_start = 0.0
    for stage in stages:
        if elapsed < stage_start + stage.duration:
            progress = max(0.0, elapsed - stage_start) / stage.duration
            return previous + (stage.target - previous) * progress
        stage_start += stage.duration
        previous = float(stage.target)
    return previous


def round_vus(value: float) -> int:
    return int(math.floor(value + 0.5))


class Executor(ABC):
    """Base executor: worker loop, iteration bookkeeping, stop handling."""

    kind: ExecutorKind

    def __init__(
        self,
        name: str,
        config: ExecutorConfig,
        run: RunContext,
        iteration_fn: IterationFn,
    ):
        self.name = name
        self.config = config
        self.run = run
        self.iteration_fn = iteration_fn
        self.result = ExecutorResult(scenario=name, executor=self.kind.value)
        self.pool: Optional[WorkerPool] = None
        self._iteration_seq = count()

        registry = run.registry
        self._iterations = registry.counter(ITERATIONS)
        self._iteration_duration = registry.trend(ITERATION_DURATION)
        self._iteration_errors = registry.counter(ITERATION_ERRORS)
        self._interrupted = registry.counter(INTERRUPTED_ITERATIONS)
        self._vus = registry.gauge(VUS)
        self._vus_max = registry.gauge(VUS_MAX)

    def _make_pool(
        self, max_workers: int, retire_grace_seconds: Optional[float] = None
    ) -> WorkerPool:
        self.pool = WorkerPool(
            self._worker,
            min_workers=0,
            max_workers=max_workers,
            retire_grace_seconds=retire_grace_seconds,
            on_workers_changed=self._on_workers_changed,
            name=self.name,
        )
        return self.pool

    def _on_workers_changed(self) -> None:
        if self.pool is None:
            return
        self.run.set_active_vus(self.name, self.pool.active_count)
        self._vus.add(self.run.active_vus)

    def _next_iteration(self) -> Optional[int]:
        return next(self._iteration_seq)

    async def _worker(self, worker_index: int, stop_signal: asyncio.Event) -> None:
        vu = VU(
            id=self.run.next_vu_id(),
            worker_index=worker_index,
            scenario=self.name,
            run=self.run,
        )
        logger.debug("%s: VU %d started", self.name, vu.id)

        while not stop_signal.is_set() and not self.run.stopping:
            index = self._next_iteration()
            if index is None:
                break
            vu.scenario_iteration = index
            await self._run_iteration(vu)
            vu.iteration += 1
            self.result.per_worker_iterations[worker_index] = vu.iteration
            # An iteration that never awaits would otherwise starve the loop.
            await asyncio.sleep(0)

        logger.debug("%s: VU %d stopped after %d iterations", self.name, vu.id, vu.iteration)

    async def _run_iteration(self, vu: VU) -> None:
        start = now_mono()
        try:
            await self.iteration_fn(vu)
        except asyncio.CancelledError:
            self.result.iterations_interrupted += 1
            self._interrupted.add(1)
            raise
        except Exception as e:
            logger.warning(
                "%s: VU %d iteration %d failed: %s: %s",
                self.name,
                vu.id,
                vu.iteration,
                type(e).__name__,
                e,
            )
            logger.debug("Iteration traceback", exc_info=True)
            self._iteration_errors.add(1)
            check(self.run.registry, e, {ITERATION_FAILED_CHECK: False})

        self._iteration_duration.add(elapsed_ms(start))
        self._iterations.add(1)
        self.result.iterations_completed += 1

    async def _sleep_or_stop(self, seconds: float) -> bool:
        """Sleep up to `seconds`; returns True if the run was stopped meanwhile."""
        if seconds <= 0:
            return self.run.stopping
        try:
            await asyncio.wait_for(self.run.stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def execute(self) -> ExecutorResult:
        self.run.set_max_vus(self.name, self.config.max_vus)
        self._vus_max.add(self.run.max_vus)
        logger.info("▶️  Scenario %s: %s", self.name, self.describe())
        try:
            await self._run()
        finally:
            if self.pool is not None:
                self.result.max_active_vus = self.pool.peak_active
                self.run.set_active_vus(self.name, 0)
                self._vus.add(self.run.active_vus)
        logger.info(
            "⏹️  Scenario %s finished: %d iterations completed, %d interrupted",
            self.name,
            self.result.iterations_completed,
            self.result.iterations_interrupted,
        )
        return self.result

    async def _stop_pool(self, pool: WorkerPool) -> None:
        self.result.abandoned_workers += await pool.stop_all(
            timeout_seconds=self.config.graceful_stop
        )

    @abstractmethod
    async def _run(self) -> None: ...

    @abstractmethod
    def describe(self) -> str: ...


class ConstantVUsExecutor(Executor):
    kind = ExecutorKind.CONSTANT_VUS
    config: ConstantVUsConfig

    def describe(self) -> str:
        return f"{self.config.vus} VUs for {format_duration(self.config.duration)}"

    async def _run(self) -> None:
        pool = self._make_pool(max_workers=self.config.vus)
        await pool.scale_to(self.config.vus)
        await self._sleep_or_stop(self.config.duration)
        await self._stop_pool(pool)


class RampingVUsExecutor(Executor):
    kind = ExecutorKind.RAMPING_VUS
    config: RampingVUsConfig

    def __init__(self, *args, tick_seconds: float = 0.1, **kwargs):
        super().__init__(*args, **kwargs)
        self.tick_seconds = tick_seconds

    def describe(self) -> str:
        stages = ", ".join(
            f"{format_duration(s.duration)}->{s.target}" for s in self.config.stages
        )
        return f"start {self.config.start_vus} VUs, stages [{stages}]"

    def target_at(self, elapsed: float) -> int:
        return round_vus(
            target_vus_at(self.config.start_vus, self.config.stages, elapsed)
        )

    async def _run(self) -> None:
        pool = self._make_pool(
            max_workers=self.config.max_vus,
            retire_grace_seconds=self.config.graceful_ramp_down,
        )
        total = self.config.total_duration
        start = now_mono()

        while not self.run.stopping:
            elapsed = now_mono() - start
            if elapsed >= total:
                break
            await pool.scale_to(self.target_at(elapsed))
            if await self._sleep_or_stop(min(self.tick_seconds, total - elapsed)):
                break

        await self._stop_pool(pool)


class SharedIterationsExecutor(Executor):
    kind = ExecutorKind.SHARED_ITERATIONS
    config: SharedIterationsConfig

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.budget = IterationBudget(self.config.iterations)

    def describe(self) -> str:
        return (
            f"{self.config.iterations} iterations shared by {self.config.vus} VUs "
            f"(max {format_duration(self.config.max_duration)})"
        )

    def _next_iteration(self) -> Optional[int]:
        return self.budget.claim()

    async def _run(self) -> None:
        workers = min(self.config.vus, self.config.iterations)
        pool = self._make_pool(max_workers=workers)
        await pool.scale_to(workers)

        finished = asyncio.ensure_future(pool.wait_all())
        stopped = asyncio.ensure_future(self.run.stop_event.wait())
        done, _ = await asyncio.wait(
            {finished, stopped},
            timeout=self.config.max_duration,
            return_when=asyncio.FIRST_COMPLETED,
        )
        stopped.cancel()

        if finished not in done:
            reason = "run stopped" if stopped in done else "maxDuration reached"
            logger.warning(
                "%s: %s with %d of %d iterations unclaimed",
                self.name,
                reason,
                self.budget.remaining,
                self.budget.total,
            )
        await self._stop_pool(pool)
        await finished


_EXECUTORS: dict[str, type[Executor]] = {
    ExecutorKind.CONSTANT_VUS.value: ConstantVUsExecutor,
    ExecutorKind.RAMPING_VUS.value: RampingVUsExecutor,
    ExecutorKind.SHARED_ITERATIONS.value: SharedIterationsExecutor,
}


def create_executor(
    name: str,
    config: ExecutorConfig,
    run: RunContext,
    iteration_fn: IterationFn,
    *,
    ramp_tick_seconds: float = 0.1,
) -> Executor:
    """
    Factory function to create the executor for a scenario config.

    Raises:
        ValueError: for an unknown executor kind.
    """
    executor_cls = _EXECUTORS.get(config.executor)
    if executor_cls is None:
        raise ValueError(f"Unknown executor: {config.executor}")
    if executor_cls is RampingVUsExecutor:
        return RampingVUsExecutor(
            name, config, run, iteration_fn, tick_seconds=ramp_tick_seconds
        )
    return executor_cls(name, config, run, iteration_fn)
