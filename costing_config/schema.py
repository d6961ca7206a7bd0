"""
Configuration schema (``costing_config.schema``).

Frozen dataclasses produced by the loader.  Field defaults mirror the
packaged ``defaults.yaml``; validation runs in ``__post_init__`` so an
invalid configuration can never be constructed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from costing_kernel.domain.values import validate_currency

VALID_RISK_LEVELS = ("low", "medium", "high", "critical")


@dataclass(frozen=True)
class CostingSettings:
    """Home currency, precision and default selling margins."""

    home_currency: str = "XAF"
    cost_decimal_places: int = 9
    price_decimal_places: int = 2
    default_wholesale_margin_pct: Decimal = Decimal("20")
    default_retail_margin_pct: Decimal = Decimal("50")

    def __post_init__(self) -> None:
        object.__setattr__(self, "home_currency", validate_currency(self.home_currency))
        if not 0 <= self.cost_decimal_places <= 9:
            raise ValueError("cost_decimal_places must be between 0 and 9")
        if not 0 <= self.price_decimal_places <= self.cost_decimal_places:
            raise ValueError("price_decimal_places must be between 0 and cost_decimal_places")
        if self.default_wholesale_margin_pct < 0:
            raise ValueError("default_wholesale_margin_pct cannot be negative")
        if self.default_retail_margin_pct < 0:
            raise ValueError("default_retail_margin_pct cannot be negative")


@dataclass(frozen=True)
class AgingBucketDef:
    """One aging bucket: lower bound in days (inclusive) and risk level."""

    name: str
    min_days: int
    risk: str

    def __post_init__(self) -> None:
        if self.min_days < 0:
            raise ValueError(f"Bucket '{self.name}': min_days cannot be negative")
        if self.risk not in VALID_RISK_LEVELS:
            raise ValueError(
                f"Bucket '{self.name}': risk must be one of {VALID_RISK_LEVELS}, got '{self.risk}'"
            )


@dataclass(frozen=True)
class AgingSettings:
    """Ordered aging buckets (ascending min_days, first bucket starts at 0)."""

    buckets: tuple[AgingBucketDef, ...] = ()

    def __post_init__(self) -> None:
        if not self.buckets:
            raise ValueError("At least one aging bucket is required")
        if self.buckets[0].min_days != 0:
            raise ValueError("The first aging bucket must start at 0 days")
        bounds = [b.min_days for b in self.buckets]
        if any(a >= b for a, b in zip(bounds, bounds[1:])):
            raise ValueError("Aging bucket lower bounds must be strictly ascending")
        names = [b.name for b in self.buckets]
        if len(set(names)) != len(names):
            raise ValueError("Aging bucket names must be unique")


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection settings; the URL may be overridden by the caller."""

    url: str = "sqlite:///costing.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10


@dataclass(frozen=True)
class CostingConfig:
    """The compiled runtime configuration."""

    costing: CostingSettings
    aging: AgingSettings
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    checksum: str = ""
    source: str = ""
