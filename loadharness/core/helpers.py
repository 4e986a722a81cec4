"""
Small helpers shared by executors and scenarios: clock, durations, randomness.
"""

from __future__ import annotations

import math
import random
import re
import time
from typing import Any, Optional

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")

_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def now_mono() -> float:
    """Monotonic clock used for every duration measurement."""
    return time.monotonic()


def elapsed_ms(start_mono: float) -> float:
    return (time.monotonic() - start_mono) * 1000.0


def parse_duration(value: Any) -> float:
    """
    Parse a duration into seconds.

    Accepts numbers (seconds) or k6-style strings such as "500ms", "30s",
    "1m", "1h" and compound forms like "2m30s".

    Raises:
        ValueError: for anything else, including negative values.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value < 0:
            raise ValueError(f"duration must be a finite value >= 0: {value!r}")
        return float(value)
    if not isinstance(value, str):
        raise ValueError(f"invalid duration: {value!r}")

    raw = value.strip().lower()
    if not raw:
        raise ValueError("empty duration")
    try:
        return parse_duration(float(raw))
    except ValueError:
        pass

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(raw):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(raw):
        raise ValueError(f"invalid duration: {value!r}")
    return total


def format_duration(seconds: float) -> str:
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    minutes, secs = divmod(seconds, 60)
    if minutes >= 1:
        return f"{int(minutes)}m{secs:04.1f}s"
    return f"{secs:.1f}s"


def random_int(n: int, rng: Optional[random.Random] = None) -> int:
    """Uniform integer in [1, n]."""
    if n < 1:
        raise ValueError("n must be >= 1")
    return (rng or random).randint(1, n)


def random_between(
    low: float, high: float, rng: Optional[random.Random] = None
) -> float:
    """Uniform float in [low, high]; used for think times."""
    if high < low:
        raise ValueError("high must be >= low")
    return (rng or random).uniform(low, high)
