"""
Quick load test: a two-minute ramp against the product list.
"""

import logging

from loadharness.core.context import VU
from loadharness.core.metrics import MetricsRegistry
from loadharness.core.scenario import Scenario
from loadharness.models.options import RunOptions
from loadharness.models.summary import RunSummary
from loadharness.scenarios.common import HEADERS, count_lines, latency_lines, log_report

logger = logging.getLogger(__name__)

NAME = "quick-load"

SUCCESSFUL_REQUESTS = "successful_requests"
FAILED_REQUESTS = "failed_requests"
API_DURATION = "api_duration"


def define_metrics(registry: MetricsRegistry) -> None:
    registry.counter(SUCCESSFUL_REQUESTS)
    registry.counter(FAILED_REQUESTS)
    registry.trend(API_DURATION)


async def default(vu: VU) -> None:
    response = await vu.http.get(
        "/api/products", params={"page": 0, "size": 20}, headers=HEADERS
    )
    vu.metrics.trend(API_DURATION).add(response.duration_ms)

    ok = response.status == 200
    vu.check(
        response,
        {
            "product list returned": ok,
            "response time < 1s": response.duration_ms < 1000,
        },
    )
    if ok:
        vu.metrics.counter(SUCCESSFUL_REQUESTS).add(1)
    else:
        vu.metrics.counter(FAILED_REQUESTS).add(1)
        logger.debug("[VU %d] product list -> %d", vu.id, response.status)

    await vu.sleep(1)


def handle_summary(summary: RunSummary) -> None:
    lines = count_lines(summary, SUCCESSFUL_REQUESTS, FAILED_REQUESTS)
    lines.extend(latency_lines(summary, API_DURATION))
    lines.append(f"⏱️  max: {summary.metric_value(API_DURATION, 'max'):.0f}ms")
    log_report("Quick load test", lines)


scenario = Scenario(
    name=NAME,
    default=default,
    options=RunOptions(
        stages=[
            {"duration": "30s", "target": 50},
            {"duration": "1m", "target": 100},
            {"duration": "30s", "target": 0},
        ],
        thresholds={
            "http_req_duration": ["p(95)<1000"],
            "http_req_failed": ["rate<0.01"],
            "checks": ["rate>0.95"],
        },
    ),
    description="Ramp to 100 VUs over the product list endpoint",
    define_metrics=define_metrics,
    handle_summary=handle_summary,
)
