"""
costing_services.valuation_service -- FIFO and running weighted-average valuation.

Responsibility:
    Values remaining stock two ways and keeps the second way's statistic:

    - FIFO value is read from the remaining layers (exact, per layer cost).
    - Weighted-average value is quantity on hand x the item's running
      average cost.  The running average is a maintained statistic updated
      on every receipt:

          new_avg = (old_qty x old_avg + q x c) / (old_qty + q)

      where old_qty is the remaining quantity before the receipt.  It is not
      recomputed from layers and consumption does not touch it, so the two
      methods legitimately diverge.

    It is also the single entry point for receiving stock (so the layer and
    the average always move together) and for merging two items.

Architecture position:
    Services -- stateful orchestration over InventoryLayerLedger and the
    pure valuation engine.

Invariants enforced:
    - Receipt atomicity: the layer append and the running-average update
      happen under the same item lock inside one savepoint.
    - Merge idempotency: a second merge of the same pair moves nothing and
      leaves both averages unchanged.

Failure modes:
    - InvalidQuantityError from receive_stock (via the ledger).
    - ValueError from comparison_report when a store / category filter is
      requested without a product registry.

Audit relevance:
    Receipts log the previous and new running average; merges log the
    blended average and the number of layers moved.

Usage:
    ledger = InventoryLayerLedger(session, clock)
    valuation = ValuationService(session, ledger, clock=clock)

    valuation.receive_stock(key, Decimal("10"), Decimal("100"), "PO-1")
    valuation.receive_stock(key, Decimal("10"), Decimal("200"), "PO-2")
    ledger.consume_fifo(key, Decimal("10"))

    valuation.fifo_value(key).value                # 2000
    valuation.weighted_average_value(key).value    # 1500
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from costing_engines.valuation import (
    ValuationComparisonLine,
    ValuationComparisonReport,
    ValuationFigure,
    blend_averages,
    fifo_value,
    moving_average,
)
from costing_kernel.db.types import COST_DECIMAL_PLACES, round_amount
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.domain.values import ItemKey
from costing_kernel.logging_config import get_logger
from costing_kernel.models import LayerSourceType
from costing_services.layer_ledger import InventoryLayerLedger, LayerReceipt
from costing_services.registry import ProductRegistry

logger = get_logger("services.valuation")

ZERO = Decimal("0")


@dataclass(frozen=True)
class ReceiptRecord:
    """A received layer together with the running average it produced."""

    layer: LayerReceipt
    previous_average_cost: Decimal
    running_average_cost: Decimal

    @property
    def item_key(self) -> ItemKey:
        return self.layer.item_key

    @property
    def total_cost(self) -> Decimal:
        return self.layer.quantity * self.layer.unit_cost


@dataclass(frozen=True)
class ValuationScope:
    """
    Which items a comparison report covers.

    product_ids narrows directly; store_id / category_id are resolved to
    product ids through the product registry.  Filters combine with AND.
    """

    product_ids: frozenset[str] | None = None
    store_id: str | None = None
    category_id: str | None = None
    include_zero_stock: bool = False


@dataclass(frozen=True)
class MergeResult:
    """Outcome of merging ``source`` into ``target``."""

    source: ItemKey
    target: ItemKey
    layers_moved: int
    source_quantity: Decimal
    target_quantity: Decimal
    previous_target_average: Decimal
    running_average_cost: Decimal


class ValuationService:
    """
    Dual-method valuation and the running weighted-average statistic.

    Contract:
        Shares the caller's Session with the ledger it is given.  Flushes,
        never commits.
    """

    def __init__(
        self,
        session: Session,
        ledger: InventoryLayerLedger,
        registry: ProductRegistry | None = None,
        clock: Clock | None = None,
        cost_decimal_places: int = COST_DECIMAL_PLACES,
    ):
        self._session = session
        self._ledger = ledger
        self._registry = registry
        self._clock = clock or SystemClock()
        self._cost_places = cost_decimal_places

    @property
    def ledger(self) -> InventoryLayerLedger:
        return self._ledger

    def receive_stock(
        self,
        key: ItemKey,
        quantity: Decimal,
        unit_cost: Decimal,
        source_reference: str | None = None,
        source_type: str = LayerSourceType.PURCHASE,
        received_at: datetime | None = None,
    ) -> ReceiptRecord:
        """
        Append a layer and fold it into the running average, atomically.

        Raises:
            InvalidQuantityError: quantity <= 0 or unit_cost < 0.  Neither
                the layer nor the average is written.
        """
        with self._session.begin_nested():
            receipt = self._ledger.append_layer(
                key,
                quantity,
                unit_cost,
                received_at=received_at,
                source_reference=source_reference,
                source_type=source_type,
            )
            state = self._ledger.lock_item(key)
            previous_average = state.running_average_cost
            new_average = round_amount(
                moving_average(
                    receipt.previous_quantity,
                    previous_average,
                    receipt.quantity,
                    receipt.unit_cost,
                ),
                self._cost_places,
            )
            state.running_average_cost = new_average
            self._session.flush()

        logger.info("running_average_updated", extra={
            **key.as_dict(),
            "layer_id": str(receipt.layer_id),
            "previous_quantity": str(receipt.previous_quantity),
            "previous_average_cost": str(previous_average),
            "running_average_cost": str(new_average),
        })
        return ReceiptRecord(
            layer=receipt,
            previous_average_cost=previous_average,
            running_average_cost=new_average,
        )

    def running_average_cost(self, key: ItemKey) -> Decimal:
        state = self._ledger.item_state(key)
        return state.running_average_cost if state is not None else ZERO

    def fifo_value(self, key: ItemKey, as_of: datetime | None = None) -> ValuationFigure:
        """
        Quantity and exact FIFO value of the remaining layers.

        ``as_of`` excludes layers received after the cutoff; the remaining
        quantities are today's.
        """
        quantity, value = fifo_value(self._ledger.remaining_layers(key, as_of=as_of))
        return ValuationFigure(item_key=key, quantity=quantity, value=value)

    def weighted_average_value(self, key: ItemKey) -> ValuationFigure:
        """Quantity on hand x running average cost."""
        quantity = self._ledger.recompute_stock_counter(key)
        average = self.running_average_cost(key)
        return ValuationFigure(item_key=key, quantity=quantity, value=quantity * average)

    def comparison_report(
        self,
        scope: ValuationScope | None = None,
    ) -> ValuationComparisonReport:
        """FIFO vs. weighted-average valuation for every item in scope."""
        scope = scope or ValuationScope()
        items = self._items_in_scope(scope)

        lines: list[ValuationComparisonLine] = []
        for key in items:
            fifo = self.fifo_value(key)
            if fifo.quantity == 0 and not scope.include_zero_stock:
                continue
            average_cost = self.running_average_cost(key)
            lines.append(
                ValuationComparisonLine(
                    item_key=key,
                    quantity=fifo.quantity,
                    fifo_value=fifo.value,
                    fifo_unit_cost=fifo.unit_cost,
                    average_unit_cost=average_cost,
                    average_value=fifo.quantity * average_cost,
                )
            )

        report = ValuationComparisonReport(
            generated_at=self._clock.now(),
            lines=tuple(lines),
        )
        logger.info("valuation_comparison_generated", extra={
            "item_count": report.item_count,
            "store_id": scope.store_id,
            "category_id": scope.category_id,
            "total_fifo_value": str(report.total_fifo_value),
            "total_average_value": str(report.total_average_value),
        })
        return report

    def _items_in_scope(self, scope: ValuationScope) -> list[ItemKey]:
        items = self._ledger.tracked_items()
        if scope.product_ids is not None:
            wanted = set(scope.product_ids)
            items = [k for k in items if k.product_id in wanted]
        if scope.store_id is not None or scope.category_id is not None:
            if self._registry is None:
                raise ValueError("A product registry is required to filter by store or category")
            allowed = set(
                self._registry.list_product_ids(
                    store_id=scope.store_id,
                    category_id=scope.category_id,
                )
            )
            items = [k for k in items if k.product_id in allowed]
        return items

    def merge_items(self, source: ItemKey, target: ItemKey) -> MergeResult:
        """
        Merge ``source`` into ``target``: blend the running averages by
        quantity on hand, then re-point all of source's layers to target.

        Safe to repeat: once source owns no layers nothing changes.
        """
        with self._session.begin_nested():
            states = self._ledger.lock_items(source, target)
            target_state = states[target]
            previous_target_average = target_state.running_average_cost

            source_layers = [] if source == target else self._ledger.layer_history(source)
            if not source_layers:
                target_quantity = self._ledger.recompute_stock_counter(target)
                logger.info("item_merge_noop", extra={
                    "source": str(source), "target": str(target),
                })
                return MergeResult(
                    source=source,
                    target=target,
                    layers_moved=0,
                    source_quantity=ZERO,
                    target_quantity=target_quantity,
                    previous_target_average=previous_target_average,
                    running_average_cost=previous_target_average,
                )

            source_state = states[source]
            source_quantity = self._ledger.recompute_stock_counter(source)
            target_quantity = self._ledger.recompute_stock_counter(target)

            if source_quantity + target_quantity > 0:
                blended = blend_averages(
                    source_quantity,
                    source_state.running_average_cost,
                    target_quantity,
                    previous_target_average,
                )
            elif target_state.total_received_quantity > 0:
                blended = previous_target_average
            else:
                blended = source_state.running_average_cost
            blended = round_amount(blended, self._cost_places)

            target_state.running_average_cost = blended
            target_state.total_received_quantity += source_state.total_received_quantity
            source_state.total_received_quantity = ZERO
            self._session.flush()

            moved = self._ledger.transfer_ownership(source, target)

        logger.info("items_merged", extra={
            "source": str(source),
            "target": str(target),
            "layers_moved": moved,
            "source_quantity": str(source_quantity),
            "target_quantity": str(target_quantity),
            "previous_target_average": str(previous_target_average),
            "running_average_cost": str(blended),
        })
        return MergeResult(
            source=source,
            target=target,
            layers_moved=moved,
            source_quantity=source_quantity,
            target_quantity=target_quantity,
            previous_target_average=previous_target_average,
            running_average_cost=blended,
        )
