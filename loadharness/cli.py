#!/usr/bin/env python3
"""Run a built-in load scenario from the command line."""

from __future__ import annotations

import argparse
import asyncio
import logging
import random
import signal
import sys
from typing import Any, Optional, Sequence

from loadharness.config import settings
from loadharness.core.errors import ConfigurationError, ExitCode
from loadharness.core.options_loader import load_options_file
from loadharness.core.runner import Runner
from loadharness.scenarios import get_scenario, list_scenarios

logger = logging.getLogger(__name__)

NOISY_LOGGERS = ("httpx", "httpcore", "asyncio")


def configure_logging(level: Optional[str] = None) -> None:
    level_name = (level or settings.LOG_LEVEL).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=settings.LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(settings.LOG_FILE)
            if settings.LOG_FILE
            else logging.NullHandler(),
        ],
    )
    # Per-request transport logging drowns out everything else under load.
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="loadharness",
        description="Run virtual-user load scenarios against an HTTP API.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: LOG_LEVEL setting).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run a scenario.")
    run.add_argument("scenario", help="Scenario name (see `loadharness list`).")
    run.add_argument(
        "--base-url",
        default=None,
        help="Server under test (default: BASE_URL setting).",
    )
    run.add_argument(
        "--config",
        default=None,
        help="YAML file with options overriding the scenario's own.",
    )
    run.add_argument("--vus", type=int, default=None, help="Override VU count.")
    run.add_argument(
        "--duration",
        default=None,
        help="Run a constant-vus executor for this long (e.g. 30s, 2m).",
    )
    run.add_argument(
        "--iterations",
        type=int,
        default=None,
        help="Run a shared-iterations executor with this many iterations.",
    )
    run.add_argument(
        "--summary-export",
        default=None,
        help="Write the JSON summary to this path.",
    )
    run.add_argument(
        "--think-time-scale",
        type=float,
        default=None,
        help="Multiplier for VU think time (0 disables pauses).",
    )
    run.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed the random source shared by VUs.",
    )

    subparsers.add_parser("list", help="List built-in scenarios.")
    return parser


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if args.config:
        overrides.update(load_options_file(args.config))
    if args.vus is not None:
        overrides["vus"] = int(args.vus)
    if args.duration is not None:
        overrides["duration"] = args.duration
    if args.iterations is not None:
        overrides["iterations"] = int(args.iterations)
    return overrides


async def _run_scenario(args: argparse.Namespace) -> int:
    scenario = get_scenario(args.scenario)
    runner = Runner(
        scenario,
        base_url=args.base_url,
        options=_overrides(args),
        think_time_scale=args.think_time_scale,
        summary_export=args.summary_export,
        rng=random.Random(args.seed) if args.seed is not None else None,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, runner.stop)
        except (NotImplementedError, RuntimeError):
            # No signal handlers on this platform/thread; Ctrl-C still raises.
            pass

    result = await runner.execute()
    return int(result.exit_code)


def _list() -> int:
    for scenario in list_scenarios():
        print(f"{scenario.name:<18} {scenario.description}")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "list":
        return _list()

    try:
        return asyncio.run(_run_scenario(args))
    except ConfigurationError as e:
        logger.error("❌ %s", e)
        return int(ExitCode.INVALID_CONFIG)
    except KeyboardInterrupt:
        print("[loadharness] interrupted", file=sys.stderr)
        return int(ExitCode.INTERRUPTED)


if __name__ == "__main__":
    raise SystemExit(main())
