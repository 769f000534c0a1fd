"""
Plan catalog loader (``pantry_config.loader``).

Responsibility
--------------
Loads plans.yaml and parses it into the frozen types in
``pantry_config.schema``.  Runtime callers go through
``pantry_config.get_plan_catalog()`` / ``get_plan()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* ``default_tier`` must name a plan in the catalog.
* ``compute_checksum`` gives a deterministic SHA-256 of the parsed data.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from pantry_config.schema import PlanCatalog, PlanDefinition, PlanLimits

DEFAULT_CATALOG_PATH = Path(__file__).parent / "plans.yaml"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _parse_limit(value: Any, tier: str, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"Plan {tier!r}: limits.{name} must be a non-negative integer, got {value!r}")
    return value


def parse_plan(tier: str, data: dict[str, Any]) -> PlanDefinition:
    """Parse one plan block."""
    limits = data["limits"]
    price = data.get("price")
    return PlanDefinition(
        tier=tier,
        name=data["name"],
        price=Decimal(str(price)) if price is not None else None,
        limits=PlanLimits(
            items=_parse_limit(limits["items"], tier, "items"),
            users=_parse_limit(limits["users"], tier, "users"),
            clients=_parse_limit(limits["clients"], tier, "clients"),
        ),
        constrained=bool(data.get("constrained", False)),
        features={str(k): bool(v) for k, v in (data.get("features") or {}).items()},
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 over the raw catalog data."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_catalog(data: dict[str, Any]) -> PlanCatalog:
    """
    Parse a whole catalog dict.

    Raises:
        KeyError: if ``plans`` is missing.
        ValueError: if there are no plans, or ``default_tier`` is unknown.
    """
    raw_plans = data["plans"]
    if not raw_plans:
        raise ValueError("Plan catalog defines no plans")

    plans = {
        str(tier).lower(): parse_plan(str(tier).lower(), block)
        for tier, block in raw_plans.items()
    }
    default_tier = str(data.get("default_tier", "pilot")).lower()
    if default_tier not in plans:
        raise ValueError(f"default_tier {default_tier!r} is not a defined plan")

    return PlanCatalog(
        version=int(data.get("version", 1)),
        default_tier=default_tier,
        unlimited_threshold=int(data.get("unlimited_threshold", 999999)),
        plans=plans,
        checksum=compute_checksum(data),
    )


def load_catalog(path: Path | None = None) -> PlanCatalog:
    """Load and parse a plan catalog file (default: the bundled plans.yaml)."""
    return parse_catalog(load_yaml_file(path or DEFAULT_CATALOG_PATH))
