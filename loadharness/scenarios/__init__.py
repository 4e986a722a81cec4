"""
Scenario Registry

Built-in scenarios for the e-commerce API, looked up by name from the CLI.
"""

from __future__ import annotations

from loadharness.core.errors import ConfigurationError
from loadharness.core.scenario import Scenario
from loadharness.scenarios import (
    coupon_issue,
    order_create,
    popular_products,
    product_list,
    quick_load,
    smoke,
)

SCENARIOS: dict[str, Scenario] = {
    module.scenario.name: module.scenario
    for module in (
        smoke,
        quick_load,
        product_list,
        popular_products,
        order_create,
        coupon_issue,
    )
}


def get_scenario(name: str) -> Scenario:
    """
    Look up a built-in scenario.

    Raises:
        ConfigurationError: if no scenario has that name.
    """
    scenario = SCENARIOS.get(name)
    if scenario is None:
        known = ", ".join(sorted(SCENARIOS))
        raise ConfigurationError(f"Unknown scenario: {name} (available: {known})")
    return scenario


def list_scenarios() -> list[Scenario]:
    return [SCENARIOS[name] for name in sorted(SCENARIOS)]


__all__ = ["SCENARIOS", "get_scenario", "list_scenarios"]
