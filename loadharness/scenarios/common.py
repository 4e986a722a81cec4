"""
Shared presets for the e-commerce API scenarios.

Executor presets are plain option dicts using the k6 field names, so a scenario
can drop one straight into `RunOptions(scenarios={...})`.
"""

import logging
import random
from typing import Any, Dict, List, Optional

from loadharness.core.helpers import random_between, random_int
from loadharness.core.http import Response
from loadharness.models.summary import RunSummary

logger = logging.getLogger(__name__)

HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}

HTTP_REQ_FAILED_THRESHOLD = ["rate<0.01"]
CHECKS_THRESHOLD = ["rate>0.99"]

# http_req_duration tiers: fast for cached reads, normal for writes, slow for
# anything else that is still acceptable.
DURATION_TIERS: Dict[str, List[str]] = {
    "fast": ["p(95)<200"],
    "normal": ["p(95)<500"],
    "slow": ["p(95)<1000"],
}


def base_thresholds(duration_tier: str) -> Dict[str, List[str]]:
    """Failure rate, check rate and one http_req_duration tier."""
    if duration_tier not in DURATION_TIERS:
        raise ValueError(f"Unknown duration tier: {duration_tier}")
    return {
        "http_req_failed": list(HTTP_REQ_FAILED_THRESHOLD),
        "http_req_duration": list(DURATION_TIERS[duration_tier]),
        "checks": list(CHECKS_THRESHOLD),
    }


SMOKE = {
    "executor": "constant-vus",
    "vus": 1,
    "duration": "30s",
}

LOAD = {
    "executor": "ramping-vus",
    "startVUs": 0,
    "stages": [
        {"duration": "1m", "target": 50},
        {"duration": "3m", "target": 50},
        {"duration": "1m", "target": 0},
    ],
}

STRESS = {
    "executor": "ramping-vus",
    "startVUs": 0,
    "stages": [
        {"duration": "2m", "target": 100},
        {"duration": "5m", "target": 100},
        {"duration": "2m", "target": 200},
        {"duration": "5m", "target": 200},
        {"duration": "2m", "target": 0},
    ],
}

SPIKE = {
    "executor": "ramping-vus",
    "startVUs": 0,
    "stages": [
        {"duration": "10s", "target": 0},
        {"duration": "10s", "target": 500},
        {"duration": "3m", "target": 500},
        {"duration": "10s", "target": 0},
    ],
}

COUPON_ISSUE = {
    "executor": "shared-iterations",
    "vus": 1000,
    "iterations": 1000,
    "maxDuration": "30s",
}


def random_user_id(rng: Optional[random.Random] = None) -> int:
    return random_int(1000, rng)


def random_product_id(rng: Optional[random.Random] = None) -> int:
    return random_int(100, rng)


def random_quantity(rng: Optional[random.Random] = None) -> int:
    return random_int(5, rng)


def random_sleep(
    low: float = 1.0, high: float = 3.0, rng: Optional[random.Random] = None
) -> float:
    """Think time in seconds, uniform in [low, high]."""
    return random_between(low, high, rng)


def success_rate(successes: float, failures: float) -> float:
    """Percentage of successes (0 when nothing was recorded)."""
    total = successes + failures
    if total <= 0:
        return 0.0
    return successes / total * 100.0


def log_report(title: str, lines: List[str]) -> None:
    """Log a framed end-of-run report block."""
    logger.info("=== %s ===", title)
    for line in lines:
        logger.info(line)
    logger.info("=" * (len(title) + 8))


def count_lines(summary: RunSummary, success_metric: str, failure_metric: str) -> List[str]:
    """Success/failure/success-rate lines shared by most reports."""
    successes = summary.metric_value(success_metric, "count")
    failures = summary.metric_value(failure_metric, "count")
    return [
        f"✅ Succeeded: {successes:.0f}",
        f"❌ Failed: {failures:.0f}",
        f"📊 Success rate: {success_rate(successes, failures):.2f}%",
    ]


def latency_lines(summary: RunSummary, metric: str, indent: str = "") -> List[str]:
    avg = summary.metric_value(metric, "avg")
    p95 = summary.metric_value(metric, "p(95)")
    return [
        f"{indent}⏱️  avg: {avg:.0f}ms",
        f"{indent}⏱️  p95: {p95:.0f}ms",
    ]


def safe_json(response: Response, selector: Optional[str] = None) -> Any:
    """`response.json(selector)`, or None when the body is not JSON."""
    try:
        return response.json(selector)
    except ValueError:
        return None
