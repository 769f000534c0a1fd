"""
Plan catalog schema.

The YAML catalog is parsed by the loader into these frozen types; nothing
else in the system reads plans.yaml.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class PlanLimits:
    """Ceilings for one tier."""

    items: int
    users: int
    clients: int


@dataclass(frozen=True)
class PlanDefinition:
    """One subscription tier."""

    tier: str
    name: str
    price: Decimal | None  # None = custom pricing
    limits: PlanLimits
    constrained: bool = False
    features: dict[str, bool] = field(default_factory=dict)

    def has_feature(self, feature: str) -> bool:
        return bool(self.features.get(feature, False))


@dataclass(frozen=True)
class PlanCatalog:
    """All tiers plus the fallback used for unknown tier names."""

    version: int
    default_tier: str
    unlimited_threshold: int
    plans: dict[str, PlanDefinition]
    checksum: str = ""

    def get(self, tier: str | None) -> PlanDefinition:
        """Look up a tier case-insensitively; unknown or empty -> default tier."""
        key = (tier or "").strip().lower()
        return self.plans.get(key) or self.plans[self.default_tier]

    def is_unlimited(self, ceiling: int) -> bool:
        return ceiling >= self.unlimited_threshold

    @property
    def tiers(self) -> tuple[str, ...]:
        return tuple(self.plans)
