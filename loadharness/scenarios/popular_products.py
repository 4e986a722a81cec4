"""
Popular products under a traffic spike.

Compares the Redis-backed realtime ranking (with and without stats) against the
database aggregate endpoint.
"""

import logging

from loadharness.core.context import VU
from loadharness.core.http import Response
from loadharness.core.metrics import HTTP_REQS, MetricsRegistry
from loadharness.core.scenario import Scenario
from loadharness.models.options import RunOptions
from loadharness.models.summary import RunSummary
from loadharness.scenarios.common import (
    HEADERS,
    SPIKE,
    base_thresholds,
    count_lines,
    latency_lines,
    log_report,
    random_sleep,
    safe_json,
    success_rate,
)

logger = logging.getLogger(__name__)

NAME = "popular-products"

SUCCESSFUL_REQUESTS = "successful_popular_requests"
FAILED_REQUESTS = "failed_popular_requests"
REDIS_DURATION = "redis_popular_duration"
REDIS_STATS_DURATION = "redis_stats_popular_duration"
DB_DURATION = "db_popular_duration"

TOP_N = 10


def define_metrics(registry: MetricsRegistry) -> None:
    registry.counter(SUCCESSFUL_REQUESTS)
    registry.counter(FAILED_REQUESTS)
    registry.trend(REDIS_DURATION)
    registry.trend(REDIS_STATS_DURATION)
    registry.trend(DB_DURATION)


def _count(vu: VU, response: Response) -> bool:
    ok = response.status == 200
    vu.metrics.counter(SUCCESSFUL_REQUESTS if ok else FAILED_REQUESTS).add(1)
    if not ok:
        logger.debug(
            "[VU %d] %s %s -> %d",
            vu.id,
            response.method,
            response.url,
            response.status,
        )
    return ok


def _has_stats(items) -> bool:
    if not isinstance(items, list) or not items:
        return False
    first = items[0]
    return isinstance(first, dict) and all(
        key in first for key in ("product", "salesCount", "rank")
    )


async def default(vu: VU) -> None:
    realtime = await vu.http.get(
        "/api/products/popular/realtime", params={"topN": TOP_N}, headers=HEADERS
    )
    vu.metrics.trend(REDIS_DURATION).add(realtime.duration_ms)
    ok = _count(vu, realtime)
    data = safe_json(realtime) if ok else None
    vu.check(
        realtime,
        {
            "[Redis] returned": ok,
            "[Redis] has products": isinstance(data, list) and len(data) > 0,
            "[Redis] at most topN": isinstance(data, list) and len(data) <= TOP_N,
            "[Redis] response time < 200ms": realtime.duration_ms < 200,
        },
    )
    await vu.sleep(random_sleep(0.3, 0.7, vu.rng))

    stats = await vu.http.get(
        "/api/products/popular/realtime/stats", params={"topN": TOP_N}, headers=HEADERS
    )
    vu.metrics.trend(REDIS_STATS_DURATION).add(stats.duration_ms)
    ok = _count(vu, stats)
    data = safe_json(stats) if ok else None
    vu.check(
        stats,
        {
            "[Redis Stats] returned": ok,
            "[Redis Stats] has products": isinstance(data, list) and len(data) > 0,
            "[Redis Stats] includes stats": _has_stats(data),
            "[Redis Stats] response time < 300ms": stats.duration_ms < 300,
        },
    )
    await vu.sleep(random_sleep(0.3, 0.7, vu.rng))

    db = await vu.http.get("/api/products/popular", headers=HEADERS)
    vu.metrics.trend(DB_DURATION).add(db.duration_ms)
    ok = _count(vu, db)
    data = safe_json(db) if ok else None
    vu.check(
        db,
        {
            "[DB] returned": ok,
            "[DB] has products": isinstance(data, list),
            "[DB] response time < 1s": db.duration_ms < 1000,
        },
    )
    await vu.sleep(random_sleep(1, 2, vu.rng))


def handle_summary(summary: RunSummary) -> None:
    successes = summary.metric_value(SUCCESSFUL_REQUESTS, "count")
    failures = summary.metric_value(FAILED_REQUESTS, "count")
    rate = success_rate(successes, failures)
    redis_p95 = summary.metric_value(REDIS_DURATION, "p(95)")
    stats_p95 = summary.metric_value(REDIS_STATS_DURATION, "p(95)")
    db_p95 = summary.metric_value(DB_DURATION, "p(95)")

    lines = count_lines(summary, SUCCESSFUL_REQUESTS, FAILED_REQUESTS)
    lines.append("[Redis realtime ranking]")
    lines.extend(latency_lines(summary, REDIS_DURATION, indent="  "))
    lines.append("[Redis realtime ranking + stats]")
    lines.extend(latency_lines(summary, REDIS_STATS_DURATION, indent="  "))
    lines.append("[DB popular products]")
    lines.extend(latency_lines(summary, DB_DURATION, indent="  "))
    lines.append(f"📈 Throughput: {summary.metric_value(HTTP_REQS, 'rate'):.2f} req/s")

    if redis_p95 > 0:
        lines.append(f"💡 Redis is {db_p95 / redis_p95:.1f}x faster than the DB (p95)")

    if rate >= 99 and redis_p95 < 100 and stats_p95 < 150:
        lines.append("  ✅ Redis cache performance excellent (p95 < 100ms)")
    elif redis_p95 < 200:
        lines.append("  ⚠️  Redis cache performance acceptable (p95 < 200ms)")
    else:
        lines.append("  ❌ Redis cache performance needs work")

    if db_p95 < 500:
        lines.append("  ✅ DB aggregation performance excellent (p95 < 500ms)")
    elif db_p95 < 1000:
        lines.append("  ⚠️  DB aggregation performance acceptable (p95 < 1s)")
    else:
        lines.append("  ❌ DB aggregation performance needs work")
    log_report("Popular products load test", lines)


scenario = Scenario(
    name=NAME,
    default=default,
    options=RunOptions(
        scenarios={"spike": SPIKE},
        thresholds={
            **base_thresholds("fast"),
            REDIS_DURATION: ["p(95)<100"],
            REDIS_STATS_DURATION: ["p(95)<150"],
            DB_DURATION: ["p(95)<500"],
        },
    ),
    description="Realtime (Redis) vs aggregated (DB) popular products under a spike to 500 VUs",
    define_metrics=define_metrics,
    handle_summary=handle_summary,
)
