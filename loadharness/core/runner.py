"""
Run orchestration.

A `Runner` takes a `Scenario` through one complete run:
1. Resolve options (scenario defaults + overrides) and fail fast if invalid
2. Create the metric registry (built-ins + scenario metrics) and freeze it
3. Start every configured executor concurrently, plus a resource sampler
4. Evaluate thresholds, build the summary, call the summary hook, export
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import httpx
import psutil

from loadharness import __version__
from loadharness.config import settings
from loadharness.core.context import RunContext
from loadharness.core.errors import ExitCode
from loadharness.core.executors import ExecutorResult, create_executor
from loadharness.core.helpers import now_mono
from loadharness.core.http import HttpClient
from loadharness.core.metrics import (
    HARNESS_CPU_PERCENT,
    HARNESS_MEMORY_MB,
    VUS,
    MetricsRegistry,
    register_builtin_metrics,
)
from loadharness.core.options_loader import merge_options
from loadharness.core.scenario import Scenario
from loadharness.core.summary import build_summary, export_summary, render_text_summary
from loadharness.core.thresholds import evaluate_thresholds
from loadharness.models.options import RunOptions, build_options
from loadharness.models.summary import RunStatus, RunSummary

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
    "User-Agent": f"loadharness/{__version__}",
}


@dataclass
class RunResult:
    summary: RunSummary
    exit_code: ExitCode
    executor_results: list[ExecutorResult] = field(default_factory=list)


def exit_code_for(summary: RunSummary) -> ExitCode:
    if summary.status == RunStatus.INTERRUPTED:
        return ExitCode.INTERRUPTED
    if summary.status == RunStatus.FAILED:
        return ExitCode.THRESHOLDS_FAILED
    return ExitCode.OK


class Runner:
    """
    Executes one scenario.

    Args:
        scenario: What to run
        base_url: Server under test (defaults to settings.BASE_URL)
        options: Overrides merged over the scenario's own options
        transport: httpx transport, mainly for tests (httpx.MockTransport)
        think_time_scale: Multiplier for VU.sleep (defaults to settings)
        summary_export: Path for the JSON summary (defaults to settings)
        rng: Random source shared by VUs; seed it for reproducible runs

    Raises:
        ConfigurationError: from the constructor when the options are invalid.
    """

    def __init__(
        self,
        scenario: Scenario,
        *,
        base_url: Optional[str] = None,
        options: Optional[Union[RunOptions, Mapping[str, Any]]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        think_time_scale: Optional[float] = None,
        summary_export: Optional[Union[str, Path]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.scenario = scenario
        self.base_url = base_url or settings.BASE_URL
        if isinstance(options, RunOptions):
            self.options = options
        else:
            self.options = merge_options(build_options(scenario.options), options)
        self.transport = transport
        self.think_time_scale = (
            settings.THINK_TIME_SCALE if think_time_scale is None else think_time_scale
        )
        self.summary_export = summary_export or settings.SUMMARY_EXPORT
        self.rng = rng

        self.registry: Optional[MetricsRegistry] = None
        self.status = RunStatus.PENDING
        self._stop_event: Optional[asyncio.Event] = None
        self._stop_requested = False

    def _build_registry(self) -> MetricsRegistry:
        registry = register_builtin_metrics(MetricsRegistry())
        if self.scenario.define_metrics is not None:
            self.scenario.define_metrics(registry)
        registry.freeze()
        return registry

    def stop(self) -> None:
        """Ask every executor to stop; in-flight iterations get their graceful stop."""
        if self._stop_requested:
            return
        self._stop_requested = True
        logger.warning("🛑 Stop requested for %s", self.scenario.name)
        if self._stop_event is not None:
            self._stop_event.set()

    async def execute(self) -> RunResult:
        registry = self._build_registry()
        self.registry = registry
        self._stop_event = asyncio.Event()
        if self._stop_requested:
            self._stop_event.set()

        logger.info("🚀 Running %s against %s", self.scenario.name, self.base_url)
        for name, config in self.options.scenarios.items():
            logger.info("📋 %s: %s", name, config.executor)

        self.status = RunStatus.RUNNING
        started_at = datetime.now(UTC)
        start = now_mono()

        async with HttpClient(
            registry,
            self.base_url,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            headers=DEFAULT_HEADERS,
            transport=self.transport,
        ) as http:
            run = RunContext(
                registry,
                http,
                think_time_scale=self.think_time_scale,
                rng=self.rng,
                stop_event=self._stop_event,
            )
            executors = [
                create_executor(
                    name,
                    config,
                    run,
                    self.scenario.default,
                    ramp_tick_seconds=settings.RAMP_TICK_SECONDS,
                )
                for name, config in self.options.scenarios.items()
            ]
            sampler = asyncio.create_task(self._collect_metrics(run))
            try:
                results = await asyncio.gather(*(e.execute() for e in executors))
            finally:
                sampler.cancel()
                await asyncio.gather(sampler, return_exceptions=True)

        elapsed = now_mono() - start
        verdicts = evaluate_thresholds(registry, self.options.thresholds, elapsed)
        summary = build_summary(
            self.scenario.name,
            registry,
            verdicts,
            started_at=started_at,
            ended_at=datetime.now(UTC),
            duration_seconds=elapsed,
            scenarios=[r.to_summary() for r in results],
            interrupted=self._stop_requested,
        )
        self.status = summary.status
        logger.info("\n%s", render_text_summary(summary))

        if self.scenario.handle_summary is not None:
            try:
                self.scenario.handle_summary(summary)
            except Exception:
                logger.exception("Summary hook for %s failed", self.scenario.name)

        if self.summary_export:
            export_summary(summary, self.summary_export)

        exit_code = exit_code_for(summary)
        logger.info(
            "🏁 %s finished in %.1fs: %s (exit %d)",
            self.scenario.name,
            elapsed,
            summary.status.value,
            int(exit_code),
        )
        return RunResult(summary=summary, exit_code=exit_code, executor_results=list(results))

    async def _collect_metrics(self, run: RunContext) -> None:
        """Sample VU count and harness resource usage until cancelled."""
        process = psutil.Process()
        process.cpu_percent(interval=None)
        while True:
            self._sample(run, process)
            await asyncio.sleep(settings.METRICS_SAMPLE_INTERVAL_SECONDS)

    def _sample(self, run: RunContext, process: psutil.Process) -> None:
        registry = run.registry
        registry.gauge(VUS).add(run.active_vus)
        try:
            registry.gauge(HARNESS_CPU_PERCENT).add(process.cpu_percent(interval=None))
            rss = process.memory_info().rss
            registry.gauge(HARNESS_MEMORY_MB).add(rss / (1024 * 1024))
        except psutil.Error as e:
            logger.debug("System metrics collection error: %s", e)
