"""
Smoke test: confirm the main endpoints answer before running heavier scenarios.
"""

import logging

from loadharness.core.context import VU
from loadharness.core.scenario import Scenario
from loadharness.models.options import RunOptions
from loadharness.models.summary import RunSummary
from loadharness.scenarios.common import HEADERS, SMOKE, log_report

logger = logging.getLogger(__name__)

NAME = "smoke"


async def default(vu: VU) -> None:
    health = await vu.http.get("/actuator/health")
    vu.check(
        health,
        {
            "[Health] server is up": lambda r: r.status == 200,
            "[Health] status UP": lambda r: r.json("status") == "UP",
        },
    )
    await vu.sleep(1)

    products = await vu.http.get(
        "/api/products", params={"page": 0, "size": 5}, headers=HEADERS
    )
    vu.check(
        products,
        {
            "[Products] responded": lambda r: r.status == 200,
            "[Products] has pageable": lambda r: r.json("pageable") is not None,
        },
    )
    await vu.sleep(1)

    coupons = await vu.http.get("/api/coupons/available", headers=HEADERS)
    vu.check(coupons, {"[Coupons] responded": lambda r: r.status == 200})
    await vu.sleep(1)

    popular = await vu.http.get(
        "/api/products/popular/realtime", params={"topN": 5}, headers=HEADERS
    )
    vu.check(popular, {"[Popular] responded": lambda r: r.status == 200})
    await vu.sleep(2)


def handle_summary(summary: RunSummary) -> None:
    checks_rate = summary.metric_value("checks", "rate")
    lines = [f"✅ Checks passed: {checks_rate * 100:.2f}%"]
    if checks_rate >= 0.99:
        lines.append("✅ Smoke test passed, load scenarios can run")
    else:
        lines.append("❌ Smoke test failed, check the API and server state")
    log_report("Smoke test", lines)


scenario = Scenario(
    name=NAME,
    default=default,
    options=RunOptions(scenarios={"smoke": SMOKE}),
    description="Basic availability of health, products, coupons and popular products",
    handle_summary=handle_summary,
)
