"""
Tests for the virtual-user executors.

Executors run against a RunContext backed by an httpx.MockTransport; most
iteration functions here never touch HTTP and only record what they saw.
"""

import asyncio

import pytest

from loadharness.core.context import VU, RunContext
from loadharness.core.executors import (
    ITERATION_FAILED_CHECK,
    ConstantVUsExecutor,
    IterationBudget,
    RampingVUsExecutor,
    SharedIterationsExecutor,
    create_executor,
    round_vus,
    target_vus_at,
)
from loadharness.core.helpers import now_mono
from loadharness.core.metrics import (
    CHECKS,
    INTERRUPTED_ITERATIONS,
    ITERATION_ERRORS,
    ITERATIONS,
    VUS,
    VUS_MAX,
)
from loadharness.models.options import (
    ConstantVUsConfig,
    RampingVUsConfig,
    SharedIterationsConfig,
    Stage,
)


class TestIterationBudget:
    def test_claims_each_index_once(self) -> None:
        budget = IterationBudget(3)
        assert [budget.claim() for _ in range(5)] == [0, 1, 2, None, None]
        assert budget.claimed == 3
        assert budget.remaining == 0

    def test_rejects_negative_total(self) -> None:
        with pytest.raises(ValueError):
            IterationBudget(-1)


class TestRampingSchedule:
    STAGES = [
        Stage(duration=60, target=50),
        Stage(duration=180, target=50),
        Stage(duration=60, target=0),
    ]

    @pytest.mark.parametrize(
        "elapsed, expected",
        [
            (0, 0.0),
            (30, 25.0),
            (60, 50.0),
            (150, 50.0),
            (270, 25.0),
            (300, 0.0),
            (1000, 0.0),
        ],
    )
    def test_piecewise_linear_target(self, elapsed, expected) -> None:
        assert target_vus_at(0, self.STAGES, elapsed) == pytest.approx(expected)

    def test_starts_from_start_vus(self) -> None:
        stages = [Stage(duration=10, target=11)]
        assert target_vus_at(1, stages, 5) == pytest.approx(6.0)

    def test_round_half_up(self) -> None:
        assert round_vus(2.5) == 3
        assert round_vus(2.49) == 2
        assert round_vus(0.0) == 0


class TestSharedIterations:
    @pytest.mark.asyncio
    async def test_budget_runs_exactly_once_per_index(self, run_context: RunContext) -> None:
        seen: list[int] = []

        async def iteration(vu: VU) -> None:
            seen.append(vu.scenario_iteration)
            await asyncio.sleep(0)

        config = SharedIterationsConfig(vus=1000, iterations=1000, max_duration=30)
        executor = SharedIterationsExecutor("couponRush", config, run_context, iteration)

        result = await executor.execute()

        assert sorted(seen) == list(range(1000))
        assert result.iterations_completed == 1000
        assert sum(result.per_worker_iterations.values()) == 1000
        assert result.max_active_vus == 1000
        assert run_context.registry[ITERATIONS].count == 1000
        assert run_context.registry[VUS_MAX].value == 1000

    @pytest.mark.asyncio
    async def test_fewer_vus_share_the_budget(self, run_context: RunContext) -> None:
        ids: set[int] = set()

        async def iteration(vu: VU) -> None:
            ids.add(vu.id)
            await asyncio.sleep(0)

        config = SharedIterationsConfig(vus=4, iterations=40)
        result = await SharedIterationsExecutor(
            "burst", config, run_context, iteration
        ).execute()

        assert result.iterations_completed == 40
        assert ids <= {1, 2, 3, 4}
        assert sum(result.per_worker_iterations.values()) == 40

    @pytest.mark.asyncio
    async def test_max_duration_bounds_the_run(self, run_context: RunContext) -> None:
        async def iteration(vu: VU) -> None:
            await asyncio.sleep(0.05)

        config = SharedIterationsConfig(
            vus=2, iterations=1000, max_duration="100ms", graceful_stop="1s"
        )
        executor = SharedIterationsExecutor("slow", config, run_context, iteration)

        result = await asyncio.wait_for(executor.execute(), timeout=5)

        assert 0 < result.iterations_completed < 1000
        assert executor.budget.remaining > 0

    @pytest.mark.asyncio
    async def test_run_stop_halts_claiming(self, run_context: RunContext) -> None:
        async def iteration(vu: VU) -> None:
            if vu.scenario_iteration == 4:
                run_context.stop_event.set()
            await asyncio.sleep(0)

        config = SharedIterationsConfig(vus=1, iterations=100)
        result = await SharedIterationsExecutor(
            "stoppable", config, run_context, iteration
        ).execute()

        assert result.iterations_completed == 5

    @pytest.mark.asyncio
    async def test_active_vus_drop_as_workers_finish(self, run_context: RunContext) -> None:
        release = asyncio.Event()

        async def iteration(vu: VU) -> None:
            if vu.scenario_iteration == 0:
                await release.wait()

        config = SharedIterationsConfig(vus=4, iterations=4)
        executor = SharedIterationsExecutor("drain", config, run_context, iteration)
        task = asyncio.create_task(executor.execute())

        for _ in range(100):
            await asyncio.sleep(0.01)
            if run_context.active_vus == 1:
                break

        # Three workers found the budget empty and exited; one is still busy
        assert run_context.active_vus == 1
        assert run_context.registry[VUS].value == 1

        release.set()
        result = await asyncio.wait_for(task, timeout=5)

        assert result.iterations_completed == 4
        assert run_context.active_vus == 0


class TestVUsMax:
    @pytest.mark.asyncio
    async def test_concurrent_scenarios_sum_capacity(self, run_context: RunContext) -> None:
        async def iteration(vu: VU) -> None:
            await asyncio.sleep(0.01)

        executors = [
            ConstantVUsExecutor(
                "browse",
                ConstantVUsConfig(vus=3, duration="100ms", graceful_stop="1s"),
                run_context,
                iteration,
            ),
            ConstantVUsExecutor(
                "checkout",
                ConstantVUsConfig(vus=2, duration="100ms", graceful_stop="1s"),
                run_context,
                iteration,
            ),
        ]

        await asyncio.gather(*(e.execute() for e in executors))

        registry = run_context.registry
        assert run_context.max_vus == 5
        assert registry[VUS_MAX].value == 5
        assert registry[VUS].aggregate("max") == 5


class TestConstantVUs:
    @pytest.mark.asyncio
    async def test_runs_all_vus_for_duration(self, run_context: RunContext) -> None:
        async def iteration(vu: VU) -> None:
            await asyncio.sleep(0.01)

        config = ConstantVUsConfig(vus=3, duration="200ms", graceful_stop="1s")
        result = await ConstantVUsExecutor("steady", config, run_context, iteration).execute()

        assert result.max_active_vus == 3
        assert set(result.per_worker_iterations) == {0, 1, 2}
        assert result.iterations_completed >= 3
        assert result.iterations_interrupted == 0
        assert run_context.active_vus == 0

    @pytest.mark.asyncio
    async def test_iteration_errors_are_isolated(self, run_context: RunContext) -> None:
        calls = 0

        async def iteration(vu: VU) -> None:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.005)
            if vu.iteration % 2 == 0:
                raise RuntimeError("server exploded")

        config = ConstantVUsConfig(vus=2, duration="100ms", graceful_stop="1s")
        result = await ConstantVUsExecutor("flaky", config, run_context, iteration).execute()

        registry = run_context.registry
        errors = registry[ITERATION_ERRORS].count
        assert errors > 0
        assert result.iterations_completed == calls
        assert registry.checks.get(ITERATION_FAILED_CHECK).fails == errors
        assert registry[CHECKS].fails == errors

    @pytest.mark.asyncio
    async def test_graceful_stop_interrupts_long_iterations(
        self, run_context: RunContext
    ) -> None:
        async def iteration(vu: VU) -> None:
            await asyncio.sleep(10)

        config = ConstantVUsConfig(vus=2, duration="50ms", graceful_stop="50ms")
        result = await asyncio.wait_for(
            ConstantVUsExecutor("stuck", config, run_context, iteration).execute(),
            timeout=5,
        )

        assert result.iterations_completed == 0
        assert result.iterations_interrupted == 2
        assert result.abandoned_workers == 2
        assert run_context.registry[INTERRUPTED_ITERATIONS].count == 2

    @pytest.mark.asyncio
    async def test_stop_event_ends_early(self, run_context: RunContext) -> None:
        async def iteration(vu: VU) -> None:
            await asyncio.sleep(0.01)

        config = ConstantVUsConfig(vus=1, duration="30s", graceful_stop="1s")
        executor = ConstantVUsExecutor("long", config, run_context, iteration)

        async def stop_soon() -> None:
            await asyncio.sleep(0.05)
            run_context.stop_event.set()

        stopper = asyncio.create_task(stop_soon())
        result = await asyncio.wait_for(executor.execute(), timeout=5)
        await stopper

        assert result.iterations_completed > 0


class TestRampingVUs:
    @pytest.mark.asyncio
    async def test_follows_stages(self, run_context: RunContext) -> None:
        async def iteration(vu: VU) -> None:
            await asyncio.sleep(0.005)

        config = RampingVUsConfig(
            start_vus=0,
            stages=[
                Stage(duration="100ms", target=4),
                Stage(duration="100ms", target=4),
                Stage(duration="100ms", target=0),
            ],
            graceful_ramp_down="100ms",
            graceful_stop="1s",
        )
        executor = RampingVUsExecutor(
            "ramp", config, run_context, iteration, tick_seconds=0.01
        )

        result = await asyncio.wait_for(executor.execute(), timeout=5)

        assert result.max_active_vus == 4
        assert result.iterations_completed > 0
        assert run_context.active_vus == 0

    @pytest.mark.asyncio
    async def test_active_workers_track_interpolated_target(
        self, run_context: RunContext
    ) -> None:
        async def iteration(vu: VU) -> None:
            await asyncio.sleep(0.005)

        stages = [
            Stage(duration="400ms", target=8),
            Stage(duration="400ms", target=8),
            Stage(duration="400ms", target=0),
        ]
        config = RampingVUsConfig(
            start_vus=0, stages=stages, graceful_ramp_down="100ms", graceful_stop="1s"
        )
        executor = RampingVUsExecutor(
            "ramp", config, run_context, iteration, tick_seconds=0.01
        )
        samples: list[tuple[float, int]] = []

        async def sample() -> None:
            while executor.pool is None:
                await asyncio.sleep(0)
            start = now_mono()
            while True:
                samples.append((now_mono() - start, executor.pool.active_count))
                await asyncio.sleep(0.01)

        run = asyncio.create_task(executor.execute())
        sampler = asyncio.create_task(sample())
        await asyncio.wait_for(run, timeout=5)
        sampler.cancel()
        await asyncio.gather(sampler, return_exceptions=True)

        # Mid-ramp, end of ramp-up, end of hold, mid ramp-down, near the end
        for checkpoint in (0.2, 0.4, 0.8, 1.0, 1.15):
            elapsed, active = min(samples, key=lambda s: abs(s[0] - checkpoint))
            expected = target_vus_at(0, stages, elapsed)
            assert abs(active - expected) <= 1, (checkpoint, elapsed, active, expected)

        assert executor.pool.active_count == 0
        assert run_context.active_vus == 0

    @pytest.mark.asyncio
    async def test_target_at_rounds(self, run_context: RunContext) -> None:
        config = RampingVUsConfig(start_vus=0, stages=[Stage(duration=10, target=5)])
        executor = RampingVUsExecutor("ramp", config, run_context, None)

        assert executor.target_at(0) == 0
        assert executor.target_at(1) == 1  # 0.5 rounds up
        assert executor.target_at(5) == 3
        assert executor.target_at(20) == 5


class TestCreateExecutor:
    @pytest.mark.parametrize(
        "config, expected",
        [
            (ConstantVUsConfig(duration=1), ConstantVUsExecutor),
            (RampingVUsConfig(stages=[Stage(duration=1, target=1)]), RampingVUsExecutor),
            (SharedIterationsConfig(), SharedIterationsExecutor),
        ],
    )
    @pytest.mark.asyncio
    async def test_dispatches_on_executor_kind(self, run_context, config, expected) -> None:
        executor = create_executor("s", config, run_context, None, ramp_tick_seconds=0.5)
        assert isinstance(executor, expected)
        if isinstance(executor, RampingVUsExecutor):
            assert executor.tick_seconds == 0.5
