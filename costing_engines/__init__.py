"""
Module: costing_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines.  This is
    the import surface for costing_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    MUST NOT import costing_services or costing_config.

Invariants enforced:
    - Purity: engines never read the clock; instants are parameters.
    - Decimal-only arithmetic; floats are rejected at the domain boundary.
    - Determinism: identical inputs produce identical outputs.

Audit relevance:
    Engine entry points are wrapped with ``@traced_engine`` and emit a
    COSTING_ENGINE_TRACE record with an input fingerprint and duration.
"""

from costing_engines.aging import (
    STOCK_AGING_BUCKETS,
    AgeBucket,
    AgedLayer,
    AgingRisk,
    StockAgingCalculator,
    StockAgingReport,
)
from costing_engines.landed_cost import (
    Charge,
    ChargeType,
    LandedCostCalculator,
    LandedCostComputation,
    LandedCostLine,
    PurchaseReceiptLine,
)
from costing_engines.tracer import traced_engine
from costing_engines.valuation import (
    ConsumptionResult,
    LayerConsumption,
    LayerSnapshot,
    ValuationComparisonLine,
    ValuationComparisonReport,
    ValuationFigure,
)

__all__ = [
    # Aging
    "AgeBucket",
    "AgedLayer",
    "AgingRisk",
    "STOCK_AGING_BUCKETS",
    "StockAgingCalculator",
    "StockAgingReport",
    # Landed cost
    "Charge",
    "ChargeType",
    "PurchaseReceiptLine",
    "LandedCostCalculator",
    "LandedCostComputation",
    "LandedCostLine",
    # Valuation
    "LayerSnapshot",
    "LayerConsumption",
    "ConsumptionResult",
    "ValuationFigure",
    "ValuationComparisonLine",
    "ValuationComparisonReport",
    # Tracing
    "traced_engine",
]
