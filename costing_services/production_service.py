"""
ProductionService -- converts consumed input stock into costed output stock.

Responsibility:
    A production (or repack / breakdown) run consumes a quantity of one
    item FIFO and receives one or more output items.  The consumed FIFO
    value is split across the outputs by their cost share, or by quantity
    when no shares are given, and each output is received at
    share_value / quantity.

Architecture position:
    Services -- stateful orchestration over ValuationService and
    InventoryLayerLedger.

Invariants enforced:
    - Atomicity: the consumption and every output receipt share one
      savepoint; a failure leaves the input layers untouched.
    - Value conservation: the output share values sum exactly to the
      consumed value.  Rounding residue goes to the last output.  Layer
      unit costs are then stored at cost precision, so the stored layer
      value of an output differs from its share by at most
      quantity x 0.5 x 10**-cost_decimal_places.

Failure modes:
    - InvalidQuantityError: non-positive source or output quantity.
    - InsufficientStockError: the input item cannot cover source_quantity.
    - ValueError: no outputs, a mix of shared and unshared outputs, or
      negative / all-zero cost shares.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from costing_engines.valuation import ConsumptionResult
from costing_kernel.db.types import COST_DECIMAL_PLACES, round_amount
from costing_kernel.domain.values import ItemKey, to_decimal
from costing_kernel.exceptions import InvalidQuantityError
from costing_kernel.logging_config import LogContext, get_logger
from costing_kernel.models import LayerSourceType
from costing_services.valuation_service import ReceiptRecord, ValuationService

logger = get_logger("services.production")

ZERO = Decimal("0")


@dataclass(frozen=True)
class ProductionOutput:
    """One output item of a conversion."""

    item_key: ItemKey
    quantity: Decimal
    cost_share: Decimal | None = None


@dataclass(frozen=True)
class ProductionResult:
    source: ItemKey
    consumption: ConsumptionResult
    receipts: tuple[ReceiptRecord, ...]
    output_values: tuple[Decimal, ...]

    @property
    def consumed_value(self) -> Decimal:
        return self.consumption.total_cost

    @property
    def total_output_value(self) -> Decimal:
        return sum(self.output_values, ZERO)

    @property
    def layer_value(self) -> Decimal:
        """Value of the output layers as stored (quantity x stored unit cost)."""
        return sum((receipt.total_cost for receipt in self.receipts), ZERO)


def split_value(
    total: Decimal,
    weights: Sequence[Decimal],
    decimal_places: int = COST_DECIMAL_PLACES,
) -> tuple[Decimal, ...]:
    """
    Split ``total`` proportionally to ``weights``.

    All but the last share are rounded; the last share takes the remainder
    so the shares sum to ``total`` exactly.
    """
    weight_sum = sum(weights, ZERO)
    if weight_sum <= 0:
        raise ValueError("Weights must sum to a positive value")
    shares = [
        round_amount(total * weight / weight_sum, decimal_places)
        for weight in weights[:-1]
    ]
    shares.append(total - sum(shares, ZERO))
    return tuple(shares)


class ProductionService:
    """Conversion of one input item into costed outputs."""

    def __init__(
        self,
        session: Session,
        valuation: ValuationService,
        cost_decimal_places: int = COST_DECIMAL_PLACES,
    ):
        self._session = session
        self._valuation = valuation
        self._cost_places = cost_decimal_places

    def _weights(self, outputs: Sequence[ProductionOutput]) -> list[Decimal]:
        if not outputs:
            raise ValueError("A conversion needs at least one output")
        for output in outputs:
            if to_decimal(output.quantity, "output quantity") <= 0:
                logger.warning("production_output_rejected", extra={
                    **output.item_key.as_dict(), "quantity": str(output.quantity),
                })
                raise InvalidQuantityError("output quantity", output.quantity, "must be positive")

        shares = [o.cost_share for o in outputs]
        if all(share is None for share in shares):
            return [o.quantity for o in outputs]
        if any(share is None for share in shares):
            raise ValueError("Either every output has a cost_share or none does")
        if any(share < 0 for share in shares):
            raise ValueError("cost_share cannot be negative")
        if sum(shares, ZERO) <= 0:
            raise ValueError("cost_share values must sum to a positive value")
        return list(shares)

    def convert(
        self,
        source: ItemKey,
        source_quantity: Decimal,
        outputs: Sequence[ProductionOutput],
        source_reference: str | None = None,
    ) -> ProductionResult:
        """Consume ``source_quantity`` of ``source`` and receive ``outputs``.

        Records logged during the run, the nested FIFO consumption's
        included, carry ``production_reference``.
        """
        weights = self._weights(outputs)
        ledger = self._valuation.ledger

        with LogContext.bind(production_reference=source_reference):
            with self._session.begin_nested():
                ledger.lock_items(source, *(o.item_key for o in outputs))
                consumption = ledger.consume_fifo(
                    source,
                    source_quantity,
                    consuming_reference=source_reference,
                )
                values = split_value(consumption.total_cost, weights, self._cost_places)
                receipts = tuple(
                    self._valuation.receive_stock(
                        output.item_key,
                        output.quantity,
                        value / output.quantity,
                        source_reference=source_reference,
                        source_type=LayerSourceType.PRODUCTION,
                    )
                    for output, value in zip(outputs, values)
                )

            result = ProductionResult(
                source=source,
                consumption=consumption,
                receipts=receipts,
                output_values=values,
            )
            logger.info("production_converted", extra={
                **source.as_dict(),
                "source_quantity": str(consumption.total_quantity),
                "consumed_value": str(consumption.total_cost),
                "layer_value": str(result.layer_value),
                "output_count": len(receipts),
            })
        return result
