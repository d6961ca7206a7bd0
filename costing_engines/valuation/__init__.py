"""
Valuation - Pure cost layer value objects and FIFO / moving-average math.

The stateful ledger and valuation service live in costing_services.
"""

from costing_engines.valuation.cost_layer import (
    ConsumptionResult,
    LayerConsumption,
    LayerSnapshot,
    ValuationComparisonLine,
    ValuationComparisonReport,
    ValuationFigure,
    available_quantity,
    blend_averages,
    fifo_value,
    moving_average,
    plan_fifo_consumption,
)

__all__ = [
    "LayerSnapshot",
    "LayerConsumption",
    "ConsumptionResult",
    "ValuationFigure",
    "ValuationComparisonLine",
    "ValuationComparisonReport",
    "available_quantity",
    "plan_fifo_consumption",
    "fifo_value",
    "moving_average",
    "blend_averages",
]
