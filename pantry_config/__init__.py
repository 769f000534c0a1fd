"""
pantry_config -- plan catalog and runtime settings.

Responsibility:
    The single place that reads configuration: the subscription plan catalog
    (plans.yaml) and environment-driven settings.  Services receive what
    they need from here; they never open the YAML or read the environment
    themselves.

Architecture position:
    Configuration.  Sits beside ``pantry_kernel``; the kernel's quota
    service imports ``get_plan`` to copy tier ceilings.

Failure modes:
    - ``FileNotFoundError`` / ``yaml.YAMLError`` if the catalog is missing or
      malformed.
    - ``ValueError`` on structural problems in the catalog or settings.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from pantry_config.loader import load_catalog
from pantry_config.schema import PlanCatalog, PlanDefinition, PlanLimits
from pantry_config.settings import Settings, get_settings, load_settings

_logger = logging.getLogger("pantry_kernel.config")


@lru_cache(maxsize=4)
def get_plan_catalog(path: Path | None = None) -> PlanCatalog:
    """Load (once per path) and return the plan catalog."""
    catalog = load_catalog(path)
    _logger.info(
        "plan_catalog_loaded",
        extra={
            "tiers": list(catalog.tiers),
            "default_tier": catalog.default_tier,
            "checksum": catalog.checksum,
        },
    )
    return catalog


def get_plan(tier: str | None) -> PlanDefinition:
    """Plan for a tier name; unknown or empty names fall back to the default tier."""
    return get_plan_catalog().get(tier)


__all__ = [
    "PlanCatalog",
    "PlanDefinition",
    "PlanLimits",
    "Settings",
    "get_plan",
    "get_plan_catalog",
    "get_settings",
    "load_settings",
]
