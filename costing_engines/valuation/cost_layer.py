"""
costing_engines.valuation.cost_layer -- Cost layer value objects and FIFO math.

Responsibility:
    Immutable snapshots of inventory layers, FIFO consumption plans,
    valuation figures and the FIFO vs. weighted-average comparison report,
    plus the pure arithmetic shared by the ledger and the valuation service:
    oldest-first consumption planning, FIFO valuation and the running
    (moving) average update.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import costing_kernel domain values and logging.  The stateful
    ledger and valuation service live in costing_services/.

Invariants enforced:
    - plan_fifo_consumption takes from layers strictly in the order given
      (the caller passes them oldest first) and never more than a layer's
      remaining quantity.
    - Value conservation: a plan's total_cost is exactly
      sum(quantity_taken * unit_cost); nothing is rounded.
    - moving_average of an empty prior position is the receipt's unit cost.

Failure modes:
    - ValueError from plan_fifo_consumption if the layers cannot cover the
      request (the ledger checks availability first and raises
      InsufficientStockError instead).
    - Division-by-zero safe: unit costs of zero-quantity figures are 0.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from costing_kernel.domain.values import ItemKey
from costing_kernel.logging_config import get_logger

logger = get_logger("engines.valuation.cost_layer")

ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class LayerSnapshot:
    """
    Read-only view of one inventory layer.

    Detached from the ORM so engines and callers can hold it after the
    session is gone.
    """

    layer_id: UUID
    item_key: ItemKey
    quantity_received: Decimal
    quantity_remaining: Decimal
    unit_cost: Decimal
    received_at: datetime
    layer_sequence: int
    source_type: str
    source_reference: str | None = None

    @property
    def remaining_value(self) -> Decimal:
        return self.quantity_remaining * self.unit_cost

    @property
    def is_depleted(self) -> bool:
        return self.quantity_remaining <= 0


@dataclass(frozen=True, slots=True)
class LayerConsumption:
    """Quantity taken from a single layer at that layer's unit cost."""

    layer_id: UUID
    quantity_taken: Decimal
    unit_cost: Decimal

    @property
    def cost(self) -> Decimal:
        return self.quantity_taken * self.unit_cost


@dataclass(frozen=True, slots=True)
class ConsumptionResult:
    """
    Outcome of one FIFO consumption: the layers drawn and the COGS figure.

    Guarantees:
        - total_quantity == sum(c.quantity_taken for c in layers_consumed)
        - total_cost == sum(c.cost for c in layers_consumed)
    """

    item_key: ItemKey
    layers_consumed: tuple[LayerConsumption, ...]
    total_quantity: Decimal
    total_cost: Decimal
    consuming_reference: str | None = None

    @classmethod
    def from_plan(
        cls,
        item_key: ItemKey,
        plan: Sequence[LayerConsumption],
        consuming_reference: str | None = None,
    ) -> ConsumptionResult:
        return cls(
            item_key=item_key,
            layers_consumed=tuple(plan),
            total_quantity=sum((c.quantity_taken for c in plan), ZERO),
            total_cost=sum((c.cost for c in plan), ZERO),
            consuming_reference=consuming_reference,
        )

    @property
    def layer_count(self) -> int:
        return len(self.layers_consumed)

    @property
    def average_unit_cost(self) -> Decimal:
        if self.total_quantity == 0:
            return ZERO
        return self.total_cost / self.total_quantity


@dataclass(frozen=True, slots=True)
class ValuationFigure:
    """Quantity on hand and its value under one costing method."""

    item_key: ItemKey
    quantity: Decimal
    value: Decimal

    @property
    def unit_cost(self) -> Decimal:
        if self.quantity == 0:
            return ZERO
        return self.value / self.quantity


@dataclass(frozen=True, slots=True)
class ValuationComparisonLine:
    """Per-item FIFO vs. weighted-average valuation."""

    item_key: ItemKey
    quantity: Decimal
    fifo_value: Decimal
    fifo_unit_cost: Decimal
    average_unit_cost: Decimal
    average_value: Decimal

    @property
    def difference(self) -> Decimal:
        """FIFO value minus weighted-average value."""
        return self.fifo_value - self.average_value


@dataclass(frozen=True)
class ValuationComparisonReport:
    """
    Side-by-side valuation of every item in scope.

    Totals are derived from the lines so they always agree with them.
    """

    generated_at: datetime
    lines: tuple[ValuationComparisonLine, ...]

    @property
    def item_count(self) -> int:
        return len(self.lines)

    @property
    def total_quantity(self) -> Decimal:
        return sum((line.quantity for line in self.lines), ZERO)

    @property
    def total_fifo_value(self) -> Decimal:
        return sum((line.fifo_value for line in self.lines), ZERO)

    @property
    def total_average_value(self) -> Decimal:
        return sum((line.average_value for line in self.lines), ZERO)

    @property
    def total_difference(self) -> Decimal:
        return self.total_fifo_value - self.total_average_value

    def line_for(self, item_key: ItemKey) -> ValuationComparisonLine | None:
        for line in self.lines:
            if line.item_key == item_key:
                return line
        return None


def available_quantity(layers: Sequence[LayerSnapshot]) -> Decimal:
    return sum((layer.quantity_remaining for layer in layers), ZERO)


def plan_fifo_consumption(
    layers: Sequence[LayerSnapshot],
    quantity: Decimal,
) -> tuple[LayerConsumption, ...]:
    """
    Plan an oldest-first draw of ``quantity`` across ``layers``.

    Preconditions:
        - ``layers`` are ordered oldest first.
        - quantity > 0.

    Postconditions:
        - Sum of quantity_taken equals quantity.
        - Every step takes min(remaining request, layer remaining).

    Raises:
        ValueError: If the layers hold less than ``quantity``.
    """
    if quantity <= 0:
        raise ValueError(f"Consumption quantity must be positive, got {quantity}")

    plan: list[LayerConsumption] = []
    outstanding = quantity
    for layer in layers:
        if outstanding <= 0:
            break
        if layer.quantity_remaining <= 0:
            continue
        taken = min(outstanding, layer.quantity_remaining)
        plan.append(LayerConsumption(layer.layer_id, taken, layer.unit_cost))
        outstanding -= taken

    if outstanding > 0:
        logger.warning("fifo_plan_short", extra={
            "requested": str(quantity),
            "shortfall": str(outstanding),
            "layer_count": len(layers),
        })
        raise ValueError(
            f"Layers cannot cover {quantity}: short by {outstanding}"
        )
    return tuple(plan)


def fifo_value(layers: Sequence[LayerSnapshot]) -> tuple[Decimal, Decimal]:
    """(quantity, value) of the remaining quantity in ``layers``."""
    quantity = ZERO
    value = ZERO
    for layer in layers:
        quantity += layer.quantity_remaining
        value += layer.remaining_value
    return quantity, value


def moving_average(
    old_quantity: Decimal,
    old_average: Decimal,
    quantity: Decimal,
    unit_cost: Decimal,
) -> Decimal:
    """
    Running weighted-average cost after a receipt.

        new_avg = (old_qty * old_avg + q * c) / (old_qty + q)

    ``old_quantity`` is the pre-receipt quantity on hand.
    """
    combined = old_quantity + quantity
    if combined <= 0:
        return unit_cost
    return (old_quantity * old_average + quantity * unit_cost) / combined


def blend_averages(
    first_quantity: Decimal,
    first_average: Decimal,
    second_quantity: Decimal,
    second_average: Decimal,
) -> Decimal:
    """Average of two positions weighted by their quantities on hand.

    With nothing on hand in either position the second average is kept.
    """
    combined = first_quantity + second_quantity
    if combined <= 0:
        return second_average
    return (first_quantity * first_average + second_quantity * second_average) / combined
