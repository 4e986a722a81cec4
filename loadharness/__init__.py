"""
loadharness - asyncio load-test harness.

Runs virtual-user scenarios against an HTTP backend, aggregates metrics and
evaluates pass/fail thresholds.
"""

__version__ = "0.1.0"
