"""
Check Evaluator

A check is a named boolean assertion about a subject (usually a response).
Every predicate contributes one sample to the run-wide ``checks`` rate and to
its own pass/fail tally. Checks never raise and never change control flow; the
aggregate boolean is returned for callers that want to branch on it.
"""

import logging
from typing import Any, Callable, Mapping, Optional, Union

from loadharness.core.metrics import CHECKS, MetricsRegistry

logger = logging.getLogger(__name__)

Predicate = Union[Callable[[Any], Any], bool]


def check(
    registry: MetricsRegistry,
    subject: Any,
    predicates: Mapping[str, Predicate],
    tags: Optional[Mapping[str, str]] = None,
) -> bool:
    """
    Evaluate named predicates against `subject`.

    Args:
        registry: Run registry holding the ``checks`` rate
        subject: Value passed to each callable predicate
        predicates: name -> callable(subject) or a plain value used for its truthiness
        tags: Optional context included in debug logs

    Returns:
        True if every predicate passed.
    """
    checks_rate = registry.rate(CHECKS)
    all_passed = True

    for name, predicate in predicates.items():
        try:
            passed = bool(predicate(subject)) if callable(predicate) else bool(predicate)
        except Exception as e:
            logger.debug("Check %r raised %s: %s", name, type(e).__name__, e)
            passed = False

        checks_rate.add(passed)
        registry.checks.record(name, passed)
        if not passed:
            all_passed = False
            if tags:
                logger.debug("Check %r failed (%s)", name, dict(tags))

    return all_passed
