"""
Module: costing_services
Responsibility:
    Stateful services of the costing system: the inventory layer ledger,
    dual-method valuation, landed cost allocation, stock aging, stock
    counter reconciliation and production conversion.

Architecture position:
    Services -- stateful orchestration over costing_engines and the
    costing_kernel models.  Every service receives its Session through its
    constructor and flushes within the caller's transaction.
"""

from costing_services.aging_service import StockAgingService
from costing_services.landed_cost_service import AllocationResult, LandedCostAllocator
from costing_services.layer_ledger import InventoryLayerLedger, LayerReceipt
from costing_services.production_service import (
    ProductionOutput,
    ProductionResult,
    ProductionService,
)
from costing_services.reconciliation_service import (
    StockCounterAdjustment,
    StockDriftFinding,
    StockReconciliationService,
)
from costing_services.registry import (
    InMemoryProductRegistry,
    PriceProposal,
    ProductRegistry,
)
from costing_services.valuation_service import (
    MergeResult,
    ReceiptRecord,
    ValuationScope,
    ValuationService,
)

__all__ = [
    "InventoryLayerLedger",
    "LayerReceipt",
    "ValuationService",
    "ValuationScope",
    "ReceiptRecord",
    "MergeResult",
    "LandedCostAllocator",
    "AllocationResult",
    "StockAgingService",
    "StockReconciliationService",
    "StockDriftFinding",
    "StockCounterAdjustment",
    "ProductionService",
    "ProductionOutput",
    "ProductionResult",
    "ProductRegistry",
    "InMemoryProductRegistry",
    "PriceProposal",
]
