"""
Order creation under normal load.

Each iteration places an order (payment included) with a unique idempotency
key, then reads the order back when it was created.
"""

import logging
import time

from loadharness.core.context import VU
from loadharness.core.metrics import MetricsRegistry
from loadharness.core.scenario import Scenario
from loadharness.models.options import RunOptions
from loadharness.models.summary import RunSummary
from loadharness.scenarios.common import (
    HEADERS,
    LOAD,
    base_thresholds,
    count_lines,
    latency_lines,
    log_report,
    random_sleep,
    random_user_id,
    safe_json,
    success_rate,
)

logger = logging.getLogger(__name__)

NAME = "order-create"

SUCCESSFUL_ORDERS = "successful_orders"
FAILED_ORDERS = "failed_orders"
ORDER_DURATION = "order_creation_duration"


def define_metrics(registry: MetricsRegistry) -> None:
    registry.counter(SUCCESSFUL_ORDERS)
    registry.counter(FAILED_ORDERS)
    registry.trend(ORDER_DURATION)


def idempotency_key(vu: VU) -> str:
    return f"test-{int(time.time() * 1000)}-{vu.id}-{vu.iteration}"


async def default(vu: VU) -> None:
    user_id = random_user_id(vu.rng)
    payload = {
        "userId": user_id,
        "userCouponId": None,
        "idempotencyKey": idempotency_key(vu),
    }

    response = await vu.http.post("/api/orders", json=payload, headers=HEADERS)
    vu.metrics.trend(ORDER_DURATION).add(response.duration_ms)

    created = response.status == 201
    order = safe_json(response) if created else None
    if not isinstance(order, dict):
        order = None
    vu.check(
        response,
        {
            "order created (201)": created,
            "order number assigned": order is not None and "orderNumber" in order,
            "order status is PAID": order is not None and order.get("status") == "PAID",
            "response time < 3s": response.duration_ms < 3000,
        },
    )

    if created:
        vu.metrics.counter(SUCCESSFUL_ORDERS).add(1)
    else:
        vu.metrics.counter(FAILED_ORDERS).add(1)
        logger.info(
            "[VU %d] order failed: userId=%d status=%d body=%s",
            vu.id,
            user_id,
            response.status,
            response.body[:200],
        )

    if order is not None and "id" in order:
        await vu.sleep(random_sleep(0.5, 1, vu.rng))
        fetched = await vu.http.get(f"/api/orders/{order['id']}", headers=HEADERS)
        vu.check(
            fetched,
            {
                "order fetched (200)": lambda r: r.status == 200,
                "order id matches": lambda r: r.status == 200
                and r.json("id") == order["id"],
            },
        )

    await vu.sleep(random_sleep(2, 5, vu.rng))


def handle_summary(summary: RunSummary) -> None:
    successes = summary.metric_value(SUCCESSFUL_ORDERS, "count")
    failures = summary.metric_value(FAILED_ORDERS, "count")
    rate = success_rate(successes, failures)
    p95 = summary.metric_value(ORDER_DURATION, "p(95)")

    lines = count_lines(summary, SUCCESSFUL_ORDERS, FAILED_ORDERS)
    lines.extend(latency_lines(summary, ORDER_DURATION))
    if rate >= 99 and p95 < 2000:
        lines.append("✅ Targets met (success >= 99%, p95 < 2s)")
    elif rate >= 95:
        lines.append("⚠️  Needs work (success rate or response time)")
    else:
        lines.append("❌ Targets missed (success rate < 95%)")
    log_report("Order creation load test", lines)


scenario = Scenario(
    name=NAME,
    default=default,
    options=RunOptions(
        scenarios={"load": LOAD},
        thresholds={
            **base_thresholds("normal"),
            ORDER_DURATION: ["p(95)<2000"],
        },
    ),
    description="Order placement with payment, ramping to 50 VUs",
    define_metrics=define_metrics,
    handle_summary=handle_summary,
)
