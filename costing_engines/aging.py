"""
Module: costing_engines.aging
Responsibility:
    Compute the age of remaining inventory layers and classify them into
    obsolescence-risk buckets for the stock aging report.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import costing_kernel domain values and logging.

Invariants enforced:
    - Purity: the "as of" instant is always passed in, never read from a
      clock.
    - Buckets are evaluated from the highest lower bound down and the lower
      bound is inclusive, so an age equal to a boundary belongs to the
      older bucket (180 days -> critical, 179 days -> high).
    - Layers received after the "as of" instant and depleted layers are
      excluded from classification.

Failure modes:
    - ValueError when a bucket sequence is empty, does not start at 0 days
      or is not strictly ascending.

Usage:
    from costing_engines.aging import StockAgingCalculator

    calculator = StockAgingCalculator()
    calculator.classify(180).name   # "180+ days"
    calculator.classify(179).risk   # AgingRisk.HIGH
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

from costing_engines.tracer import traced_engine
from costing_engines.valuation.cost_layer import LayerSnapshot
from costing_kernel.logging_config import get_logger

logger = get_logger("engines.aging")


class AgingRisk(str, Enum):
    """Obsolescence risk attached to an aging bucket."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class AgeBucket:
    """
    An aging bucket: every age at or above ``min_days`` and below the next
    bucket's lower bound.
    """

    name: str
    min_days: int
    risk: AgingRisk

    def __post_init__(self) -> None:
        if self.min_days < 0:
            raise ValueError("min_days cannot be negative")
        object.__setattr__(self, "risk", AgingRisk(self.risk))


# Stock aging buckets shown on the store's aging screen
STOCK_AGING_BUCKETS: tuple[AgeBucket, ...] = (
    AgeBucket("0-30 days", 0, AgingRisk.LOW),
    AgeBucket("30-60 days", 30, AgingRisk.LOW),
    AgeBucket("60-90 days", 60, AgingRisk.MEDIUM),
    AgeBucket("90-180 days", 90, AgingRisk.HIGH),
    AgeBucket("180+ days", 180, AgingRisk.CRITICAL),
)


@dataclass(frozen=True)
class AgedLayer:
    """A remaining layer with its age and bucket."""

    layer: LayerSnapshot
    age_days: int
    bucket: AgeBucket

    @property
    def risk(self) -> AgingRisk:
        return self.bucket.risk

    @property
    def value(self) -> Decimal:
        return self.layer.remaining_value


@dataclass(frozen=True)
class StockAgingReport:
    """
    Aging report, oldest stock first.

    Guarantees:
        - items are sorted by age_days descending.
        - value_by_bucket() has an entry for every bucket.
    """

    as_of: datetime
    buckets: tuple[AgeBucket, ...]
    items: tuple[AgedLayer, ...]

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def total_value(self) -> Decimal:
        return sum((item.value for item in self.items), Decimal("0"))

    @property
    def total_quantity(self) -> Decimal:
        return sum((item.layer.quantity_remaining for item in self.items), Decimal("0"))

    def count_by_risk(self) -> dict[AgingRisk, int]:
        counts = {risk: 0 for risk in AgingRisk}
        for item in self.items:
            counts[item.risk] += 1
        return counts

    def value_by_bucket(self) -> dict[str, Decimal]:
        totals = {bucket.name: Decimal("0") for bucket in self.buckets}
        for item in self.items:
            totals[item.bucket.name] += item.value
        return totals

    def items_in_bucket(self, bucket_name: str) -> tuple[AgedLayer, ...]:
        return tuple(i for i in self.items if i.bucket.name == bucket_name)

    def items_at_risk(self, risk: AgingRisk | str) -> tuple[AgedLayer, ...]:
        wanted = AgingRisk(risk)
        return tuple(i for i in self.items if i.risk == wanted)


class StockAgingCalculator:
    """
    Pure stock aging calculator.

    Contract:
        No I/O, no clock; all instants are parameters.
    Guarantees:
        - ``classify`` maps every age to exactly one bucket; negative ages
          (received after the "as of" instant) map to the first bucket.
    """

    def __init__(self, buckets: Sequence[AgeBucket] = STOCK_AGING_BUCKETS):
        buckets = tuple(buckets)
        if not buckets:
            raise ValueError("At least one aging bucket is required")
        if buckets[0].min_days != 0:
            raise ValueError("The first aging bucket must start at 0 days")
        bounds = [b.min_days for b in buckets]
        if any(lower >= upper for lower, upper in zip(bounds, bounds[1:])):
            raise ValueError("Aging bucket lower bounds must be strictly ascending")
        self._buckets = buckets

    @property
    def buckets(self) -> tuple[AgeBucket, ...]:
        return self._buckets

    def calculate_age(self, received_at: datetime, as_of: datetime) -> int:
        """Whole days between receipt and the "as of" instant."""
        return (as_of - received_at).days

    def classify(self, age_days: int) -> AgeBucket:
        for bucket in reversed(self._buckets):
            if age_days >= bucket.min_days:
                return bucket
        return self._buckets[0]

    @traced_engine("stock_aging", "1.0", fingerprint_fields=("as_of",))
    def age_layers(
        self,
        *,
        layers: Sequence[LayerSnapshot],
        as_of: datetime,
    ) -> tuple[AgedLayer, ...]:
        """Classify every layer with stock left that was received by ``as_of``."""
        aged: list[AgedLayer] = []
        skipped_future = 0
        for layer in layers:
            if layer.quantity_remaining <= 0:
                continue
            if layer.received_at > as_of:
                skipped_future += 1
                continue
            age = self.calculate_age(layer.received_at, as_of)
            aged.append(AgedLayer(layer=layer, age_days=age, bucket=self.classify(age)))

        logger.debug("layers_aged", extra={
            "as_of": as_of.isoformat(),
            "aged_count": len(aged),
            "skipped_future": skipped_future,
        })
        return tuple(aged)

    def build_report(
        self,
        aged_layers: Sequence[AgedLayer],
        as_of: datetime,
    ) -> StockAgingReport:
        ordered = sorted(
            aged_layers,
            key=lambda a: (-a.age_days, a.layer.received_at, a.layer.layer_sequence),
        )
        return StockAgingReport(as_of=as_of, buckets=self._buckets, items=tuple(ordered))
