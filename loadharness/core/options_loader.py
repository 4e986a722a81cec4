"""
Run Options Loader

Loads YAML option files and layers them (and command-line overrides) on top of
a scenario's built-in options.

Example file:

    scenarios:
      burst:
        executor: shared-iterations
        vus: 200
        iterations: 200
        maxDuration: 30s
    thresholds:
      http_req_duration: ["p(95)<800"]
"""

import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from loadharness.core.errors import ConfigurationError
from loadharness.models.options import RunOptions, build_options

logger = logging.getLogger(__name__)

SHORTCUT_KEYS = ("duration", "iterations", "stages")


def load_options_file(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Read a YAML options file.

    Returns:
        The raw options mapping (validated later by `merge_options`).

    Raises:
        ConfigurationError: if the file is missing, unparsable or not a mapping.
    """
    options_path = Path(path)
    if not options_path.exists():
        raise ConfigurationError(f"Options file not found: {options_path}")

    try:
        with open(options_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {options_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Options file {options_path} must contain a mapping, got {type(data).__name__}"
        )
    logger.debug("Loaded options from %s: %s", options_path, sorted(data))
    return data


def _apply_vus(scenarios: Dict[str, Dict[str, Any]], vus: int) -> None:
    for config in scenarios.values():
        if "vus" not in config:
            continue
        if "iterations" in config:
            config["vus"] = min(vus, config["iterations"])
        else:
            config["vus"] = vus


def merge_options(
    base: RunOptions, overrides: Optional[Mapping[str, Any]] = None
) -> RunOptions:
    """
    Layer `overrides` on top of `base`.

    - `scenarios` or any of duration/iterations/stages replaces the base
      scenarios entirely
    - `vus` on its own resizes every base scenario that has a VU count
    - thresholds are merged per metric, the override winning
    """
    if not overrides:
        return base

    data = base.model_dump(by_alias=True, exclude_none=True)
    overrides = dict(overrides)

    thresholds = dict(data.pop("thresholds", {}))
    thresholds.update(overrides.pop("thresholds", None) or {})

    replaces_scenarios = "scenarios" in overrides or any(
        k in overrides for k in SHORTCUT_KEYS
    )
    if replaces_scenarios:
        for key in ("scenarios", "vus") + SHORTCUT_KEYS:
            data.pop(key, None)
        data.update(overrides)
    elif "vus" in overrides:
        vus = overrides.pop("vus")
        scenarios = data.get("scenarios", {})
        if vus is not None:
            _apply_vus(scenarios, int(vus))
        data.update(overrides)
    else:
        data.update(overrides)

    data["thresholds"] = thresholds
    return build_options(data)
