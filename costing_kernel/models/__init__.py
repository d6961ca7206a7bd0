"""ORM models for the costing kernel."""

from costing_kernel.models.inventory_layer import (
    LAYER_SEQUENCE,
    InventoryLayerModel,
    LayerSourceType,
)
from costing_kernel.models.item_cost_state import ItemCostStateModel
from costing_kernel.models.landed_cost import (
    LandedCostAllocationModel,
    LandedCostChargeModel,
)
from costing_kernel.models.stock_adjustment import StockCounterAdjustmentModel

__all__ = [
    "InventoryLayerModel",
    "LAYER_SEQUENCE",
    "LayerSourceType",
    "ItemCostStateModel",
    "LandedCostAllocationModel",
    "LandedCostChargeModel",
    "StockCounterAdjustmentModel",
]
