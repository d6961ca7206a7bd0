"""
StockAgingService -- obsolescence classification of remaining stock.

Read-side service: loads remaining layers from the ledger and hands them to
costing_engines.aging.StockAgingCalculator.  The "as of" instant defaults
to the injected clock.  Buckets come from configuration when an
AgingSettings is supplied, else the standard stock aging buckets.
"""

from __future__ import annotations

from datetime import datetime

from costing_config.schema import AgingSettings
from costing_engines.aging import (
    STOCK_AGING_BUCKETS,
    AgeBucket,
    AgedLayer,
    AgingRisk,
    StockAgingCalculator,
    StockAgingReport,
)
from costing_kernel.db.types import utc
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.logging_config import get_logger
from costing_services.layer_ledger import InventoryLayerLedger

logger = get_logger("services.aging")


def buckets_from_settings(settings: AgingSettings) -> tuple[AgeBucket, ...]:
    return tuple(AgeBucket(b.name, b.min_days, AgingRisk(b.risk)) for b in settings.buckets)


class StockAgingService:
    """Classifies remaining layers by age and builds the aging report."""

    def __init__(
        self,
        ledger: InventoryLayerLedger,
        settings: AgingSettings | None = None,
        clock: Clock | None = None,
    ):
        self._ledger = ledger
        self._clock = clock or SystemClock()
        buckets = buckets_from_settings(settings) if settings else STOCK_AGING_BUCKETS
        self._calculator = StockAgingCalculator(buckets)

    @property
    def buckets(self) -> tuple[AgeBucket, ...]:
        return self._calculator.buckets

    def classify(self, as_of: datetime | None = None) -> list[AgedLayer]:
        """Age and bucket every remaining layer received by ``as_of``."""
        as_of = utc(as_of) if as_of is not None else self._clock.now()
        layers = self._ledger.all_remaining_layers(as_of=as_of)
        return list(self._calculator.age_layers(layers=layers, as_of=as_of))

    def report(
        self,
        as_of: datetime | None = None,
        risk: AgingRisk | str | None = None,
        bucket: str | None = None,
    ) -> StockAgingReport:
        """
        Aging report, oldest first, optionally filtered to one risk level
        and / or one bucket name.
        """
        as_of = utc(as_of) if as_of is not None else self._clock.now()
        aged = self.classify(as_of)
        if risk is not None:
            wanted = AgingRisk(risk)
            aged = [a for a in aged if a.risk == wanted]
        if bucket is not None:
            aged = [a for a in aged if a.bucket.name == bucket]

        report = self._calculator.build_report(aged, as_of)
        counts = report.count_by_risk()
        logger.info("stock_aging_report_generated", extra={
            "as_of": as_of.isoformat(),
            "item_count": report.item_count,
            "critical_count": counts[AgingRisk.CRITICAL],
            "high_count": counts[AgingRisk.HIGH],
            "medium_count": counts[AgingRisk.MEDIUM],
            "total_value": str(report.total_value),
        })
        return report
