"""
First-come-first-served coupon issuance.

1000 VUs share 1000 iterations; each VU asks for coupon 1 as its own user
(user id = VU id), so the server should issue exactly its stock and answer the
rest with 409 (already issued) or 410 (sold out).
"""

import logging

from loadharness.core.context import VU
from loadharness.core.metrics import MetricsRegistry
from loadharness.core.scenario import Scenario
from loadharness.models.options import RunOptions
from loadharness.models.summary import RunSummary
from loadharness.scenarios.common import (
    COUPON_ISSUE,
    HEADERS,
    base_thresholds,
    log_report,
    safe_json,
)

logger = logging.getLogger(__name__)

NAME = "coupon-issue"

SUCCESSFUL_ISSUES = "successful_coupon_issues"
FAILED_ISSUES = "failed_coupon_issues"
SOLD_OUT = "sold_out_responses"
DUPLICATES = "duplicate_issues"

COUPON_ID = 1
COUPON_STOCK = 100
EXPECTED_STATUSES = frozenset({200, 409, 410})
LOGGED_VUS = 5


def define_metrics(registry: MetricsRegistry) -> None:
    registry.counter(SUCCESSFUL_ISSUES)
    registry.counter(FAILED_ISSUES)
    registry.counter(SOLD_OUT)
    registry.counter(DUPLICATES)


async def default(vu: VU) -> None:
    user_id = vu.id
    response = await vu.http.post(
        f"/api/coupons/{COUPON_ID}/issue",
        json={"userId": user_id},
        headers=HEADERS,
        expected_statuses=EXPECTED_STATUSES,
    )

    issued = response.status == 200
    vu.check(
        response,
        {
            "valid status (200, 409, 410)": response.status in EXPECTED_STATUSES,
            "issued coupon has body": lambda r: not issued
            or (safe_json(r, "userCouponId") is not None),
        },
    )

    if issued:
        vu.metrics.counter(SUCCESSFUL_ISSUES).add(1)
    elif response.status == 409:
        vu.metrics.counter(DUPLICATES).add(1)
    elif response.status == 410:
        vu.metrics.counter(SOLD_OUT).add(1)
    else:
        vu.metrics.counter(FAILED_ISSUES).add(1)

    if vu.id <= LOGGED_VUS:
        logger.info(
            "[VU %d] userId=%d status=%d body=%s",
            vu.id,
            user_id,
            response.status,
            response.body[:100],
        )

    await vu.sleep(0.1)


def handle_summary(summary: RunSummary) -> None:
    issued = summary.metric_value(SUCCESSFUL_ISSUES, "count")
    duplicates = summary.metric_value(DUPLICATES, "count")
    sold_out = summary.metric_value(SOLD_OUT, "count")
    failed = summary.metric_value(FAILED_ISSUES, "count")

    lines = [
        f"✅ Issued: {issued:.0f}",
        f"⚠️  Duplicate requests: {duplicates:.0f} (user already has the coupon)",
        f"🚫 Sold out: {sold_out:.0f}",
        f"❌ Failed: {failed:.0f}",
        f"📊 Total requests: {issued + duplicates + sold_out + failed:.0f}",
    ]
    if issued > COUPON_STOCK:
        lines.append(f"⚠️  More than {COUPON_STOCK} coupons issued, concurrency control is broken")
    elif issued == COUPON_STOCK:
        lines.append(f"✅ Exactly {COUPON_STOCK} coupons issued")
    else:
        lines.append(f"ℹ️  {issued:.0f} coupons issued (depends on the test environment)")
    log_report("Coupon issuance test", lines)


scenario = Scenario(
    name=NAME,
    default=default,
    options=RunOptions(
        scenarios={"couponRush": COUPON_ISSUE},
        thresholds={
            **base_thresholds("normal"),
            SUCCESSFUL_ISSUES: ["count>=1"],
        },
    ),
    description="1000 users racing for a limited coupon",
    define_metrics=define_metrics,
    handle_summary=handle_summary,
)
