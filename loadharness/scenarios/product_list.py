"""
Product browsing under stress: paged list, a product detail picked from the
list, then a category filter.
"""

import logging

from loadharness.core.context import VU
from loadharness.core.metrics import HTTP_REQS, MetricsRegistry
from loadharness.core.scenario import Scenario
from loadharness.models.options import RunOptions
from loadharness.models.summary import RunSummary
from loadharness.scenarios.common import (
    HEADERS,
    STRESS,
    base_thresholds,
    count_lines,
    latency_lines,
    log_report,
    random_sleep,
    safe_json,
    success_rate,
)

logger = logging.getLogger(__name__)

NAME = "product-list"

SUCCESSFUL_REQUESTS = "successful_product_requests"
FAILED_REQUESTS = "failed_product_requests"
LIST_DURATION = "product_list_duration"
DETAIL_DURATION = "product_detail_duration"

PAGE_SIZE = 20


def define_metrics(registry: MetricsRegistry) -> None:
    registry.counter(SUCCESSFUL_REQUESTS)
    registry.counter(FAILED_REQUESTS)
    registry.trend(LIST_DURATION)
    registry.trend(DETAIL_DURATION)


def _count(vu: VU, ok: bool) -> None:
    vu.metrics.counter(SUCCESSFUL_REQUESTS if ok else FAILED_REQUESTS).add(1)


async def default(vu: VU) -> None:
    page = vu.rng.randrange(5)
    listing = await vu.http.get(
        "/api/products", params={"page": page, "size": PAGE_SIZE}, headers=HEADERS
    )
    vu.metrics.trend(LIST_DURATION).add(listing.duration_ms)

    list_ok = listing.status == 200
    content = safe_json(listing, "content") if list_ok else None
    if not isinstance(content, list):
        content = None
    vu.check(
        listing,
        {
            "product list returned": list_ok,
            "product list has content": lambda r: bool(content),
            "product list has paging info": lambda r: r.json("totalElements") is not None,
            "list response time < 1s": listing.duration_ms < 1000,
        },
    )
    _count(vu, list_ok)
    await vu.sleep(random_sleep(0.5, 1, vu.rng))

    product_id = 1
    if content:
        product_id = vu.rng.choice(content).get("id", product_id)
    else:
        logger.debug("[VU %d] empty product page %d, using product %d", vu.id, page, product_id)

    detail = await vu.http.get(f"/api/products/{product_id}", headers=HEADERS)
    vu.metrics.trend(DETAIL_DURATION).add(detail.duration_ms)

    detail_ok = detail.status == 200
    vu.check(
        detail,
        {
            "product detail returned": detail_ok,
            "product id matches": lambda r: detail_ok and r.json("id") == product_id,
            "product detail complete": lambda r: detail_ok
            and bool(r.json("name"))
            and r.json("price") is not None,
            "detail response time < 500ms": detail.duration_ms < 500,
        },
    )
    _count(vu, detail_ok)
    await vu.sleep(random_sleep(0.5, 1, vu.rng))

    category_id = vu.random_int(5)
    category = await vu.http.get(
        "/api/products",
        params={"categoryId": category_id, "page": 0, "size": PAGE_SIZE},
        headers=HEADERS,
    )
    category_ok = category.status == 200
    vu.check(category, {"category listing returned": category_ok})
    _count(vu, category_ok)

    await vu.sleep(random_sleep(1, 3, vu.rng))


def handle_summary(summary: RunSummary) -> None:
    successes = summary.metric_value(SUCCESSFUL_REQUESTS, "count")
    failures = summary.metric_value(FAILED_REQUESTS, "count")
    rate = success_rate(successes, failures)
    list_p95 = summary.metric_value(LIST_DURATION, "p(95)")
    detail_p95 = summary.metric_value(DETAIL_DURATION, "p(95)")

    lines = count_lines(summary, SUCCESSFUL_REQUESTS, FAILED_REQUESTS)
    lines.append("[list]")
    lines.extend(latency_lines(summary, LIST_DURATION, indent="  "))
    lines.append("[detail]")
    lines.extend(latency_lines(summary, DETAIL_DURATION, indent="  "))
    lines.append(f"📈 Throughput: {summary.metric_value(HTTP_REQS, 'rate'):.2f} req/s")

    if rate >= 99 and list_p95 < 500 and detail_p95 < 300:
        lines.append("✅ Targets met (success >= 99%, list p95 < 500ms, detail p95 < 300ms)")
    elif rate >= 95:
        lines.append("⚠️  Needs work (response times)")
    else:
        lines.append("❌ Targets missed (success rate or response times)")
    log_report("Product browsing load test", lines)


scenario = Scenario(
    name=NAME,
    default=default,
    options=RunOptions(
        scenarios={"stress": STRESS},
        thresholds={
            **base_thresholds("fast"),
            LIST_DURATION: ["p(95)<500"],
            DETAIL_DURATION: ["p(95)<300"],
        },
    ),
    description="Product list, detail and category reads ramping to 200 VUs",
    define_metrics=define_metrics,
    handle_summary=handle_summary,
)
