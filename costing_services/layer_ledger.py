"""
InventoryLayerLedger -- append / consume ledger of inventory cost layers.

Responsibility:
    Owns the lifecycle of inventory layers: appending a layer per receipt,
    consuming layers oldest-first as stock leaves, re-pointing layers when
    two items are merged, and answering "what is left" questions (remaining
    layers, layer sum for the stock counter).

Architecture position:
    Services -- stateful orchestration over the kernel models.  Pure FIFO
    arithmetic is delegated to costing_engines.valuation.

Invariants enforced:
    - unit_cost and quantity_received of a layer never change.
    - 0 <= quantity_remaining <= quantity_received; consumption either takes
      the full request or touches nothing.
    - FIFO order: received_at, then layer_sequence.  layer_sequence is
      allocated database-wide, so the order of two same-instant layers is
      their insertion order even after they end up on one item (merge).
    - Per-item serialisation: every mutation first locks the item's
      ItemCostStateModel row (SELECT ... FOR UPDATE).  Two items are always
      locked in ItemKey sort order.

Failure modes:
    - InvalidQuantityError: non-positive quantity or negative unit cost.
    - InsufficientStockError: FIFO request exceeds the remaining layers.
    - LayerNotFoundError: unknown layer id.
    - IntegrityError on concurrent lock-row creation is absorbed by a
      savepoint rollback and re-read.

Transaction contract:
    Flushes, never commits.  The caller owns the transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from costing_engines.valuation import (
    ConsumptionResult,
    LayerSnapshot,
    available_quantity,
    plan_fifo_consumption,
)
from costing_kernel.db.types import COST_DECIMAL_PLACES, round_amount, utc
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.domain.values import ItemKey, to_decimal
from costing_kernel.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    LayerNotFoundError,
)
from costing_kernel.logging_config import LogContext, get_logger
from costing_kernel.models import (
    LAYER_SEQUENCE,
    InventoryLayerModel,
    ItemCostStateModel,
    LayerSourceType,
)

logger = get_logger("services.layer_ledger")

ZERO = Decimal("0")


@dataclass(frozen=True)
class LayerReceipt:
    """Result of appending a layer."""

    layer_id: UUID
    item_key: ItemKey
    quantity: Decimal
    unit_cost: Decimal
    received_at: datetime
    layer_sequence: int
    previous_quantity: Decimal  # sum of remaining quantity before this receipt


def to_snapshot(layer: InventoryLayerModel) -> LayerSnapshot:
    return LayerSnapshot(
        layer_id=layer.id,
        item_key=ItemKey(layer.product_id, layer.variant_id),
        quantity_received=layer.quantity_received,
        quantity_remaining=layer.quantity_remaining,
        unit_cost=layer.unit_cost,
        received_at=layer.received_at,
        layer_sequence=layer.layer_sequence,
        source_type=layer.source_type,
        source_reference=layer.source_reference,
    )


def _item_filter(key: ItemKey):
    if key.variant_id is None:
        variant_clause = InventoryLayerModel.variant_id.is_(None)
    else:
        variant_clause = InventoryLayerModel.variant_id == key.variant_id
    return and_(InventoryLayerModel.product_id == key.product_id, variant_clause)


_FIFO_ORDER = (
    InventoryLayerModel.received_at,
    InventoryLayerModel.layer_sequence,
)


class InventoryLayerLedger:
    """
    Ledger of inventory cost layers.

    Contract:
        Every mutating method locks the item, reads fresh rows, mutates and
        flushes.  Read methods take no lock and see the session's view.

    Non-goals:
        - Does not maintain the running weighted-average cost; that is
          ValuationService's job (it calls append_layer under the same lock).
        - Does not write the product registry's stock counter.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        cost_decimal_places: int = COST_DECIMAL_PLACES,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._cost_places = cost_decimal_places

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def _select_state(self, key: ItemKey):
        return (
            select(ItemCostStateModel)
            .where(
                ItemCostStateModel.product_id == key.product_id,
                ItemCostStateModel.variant_key == key.variant_key,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )

    def lock_item(self, key: ItemKey) -> ItemCostStateModel:
        """
        Lock the item's cost-state row, creating it on first use.

        Postconditions:
            The returned row is locked until the caller's transaction ends.
        """
        state = self._session.execute(self._select_state(key)).scalar_one_or_none()
        if state is not None:
            return state

        # First receipt of this item.  Another session may be creating the
        # same row; the savepoint keeps the caller's work if we lose the race.
        savepoint = self._session.begin_nested()
        try:
            state = ItemCostStateModel(
                product_id=key.product_id,
                variant_key=key.variant_key,
                running_average_cost=ZERO,
                total_received_quantity=ZERO,
                version=0,
                updated_at=self._clock.now(),
            )
            self._session.add(state)
            self._session.flush()
            savepoint.commit()
            logger.debug("item_cost_state_created", extra=key.as_dict())
        except IntegrityError:
            logger.debug("item_cost_state_race_retry", extra=key.as_dict())
            savepoint.rollback()
            state = self._session.execute(self._select_state(key)).scalar_one()
        return state

    def lock_items(self, *keys: ItemKey) -> dict[ItemKey, ItemCostStateModel]:
        """Lock several items in deterministic order."""
        ordered = sorted(set(keys), key=ItemKey.sort_key)
        return {key: self.lock_item(key) for key in ordered}

    def item_state(self, key: ItemKey) -> ItemCostStateModel | None:
        """Unlocked read of the item's cost-state row."""
        return self._session.execute(
            select(ItemCostStateModel).where(
                ItemCostStateModel.product_id == key.product_id,
                ItemCostStateModel.variant_key == key.variant_key,
            )
        ).scalar_one_or_none()

    def _next_layer_sequence(self) -> int:
        """
        Allocate the next database-wide layer sequence.

        PostgreSQL draws from LAYER_SEQUENCE, which never blocks other
        items.  SQLite has no sequences; every SQLite write transaction
        starts with BEGIN IMMEDIATE, so the max + 1 read below runs while
        this connection already holds the database write lock.
        """
        if self._session.get_bind().dialect.name == "postgresql":
            return self._session.execute(select(LAYER_SEQUENCE.next_value())).scalar_one()
        current = self._session.execute(
            select(func.coalesce(func.max(InventoryLayerModel.layer_sequence), 0))
        ).scalar_one()
        return current + 1

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def append_layer(
        self,
        key: ItemKey,
        quantity: Decimal,
        unit_cost: Decimal,
        received_at: datetime | None = None,
        source_reference: str | None = None,
        source_type: str = LayerSourceType.PURCHASE,
    ) -> LayerReceipt:
        """
        Record a receipt of ``quantity`` units at ``unit_cost``.

        Preconditions:
            quantity > 0, unit_cost >= 0 (home currency).

        Postconditions:
            A new layer with quantity_remaining == quantity_received ==
            quantity.  The returned previous_quantity is the item's remaining
            quantity before this layer.

        Raises:
            InvalidQuantityError: On a non-positive quantity or negative cost.
            ValueError: On an unknown source_type.
        """
        quantity = to_decimal(quantity, "quantity")
        unit_cost = to_decimal(unit_cost, "unit_cost")
        if quantity <= 0:
            logger.warning("layer_append_rejected", extra={
                **key.as_dict(), "field": "quantity", "value": str(quantity),
            })
            raise InvalidQuantityError("quantity", quantity, "must be positive")
        if unit_cost < 0:
            logger.warning("layer_append_rejected", extra={
                **key.as_dict(), "field": "unit_cost", "value": str(unit_cost),
            })
            raise InvalidQuantityError("unit_cost", unit_cost, "cannot be negative")
        if source_type not in LayerSourceType.ALL:
            raise ValueError(f"Unknown layer source type: {source_type}")

        now = self._clock.now()
        received_at = utc(received_at) if received_at is not None else now

        state = self.lock_item(key)
        previous_quantity = available_quantity(self._remaining_snapshots(key))
        sequence = self._next_layer_sequence()

        state.total_received_quantity += quantity
        state.version += 1
        state.updated_at = now

        layer = InventoryLayerModel(
            product_id=key.product_id,
            variant_id=key.variant_id,
            quantity_received=quantity,
            quantity_remaining=quantity,
            unit_cost=round_amount(unit_cost, self._cost_places),
            received_at=received_at,
            created_at=now,
            layer_sequence=sequence,
            source_type=source_type,
            source_reference=source_reference,
        )
        self._session.add(layer)
        self._session.flush()

        logger.info("layer_appended", extra={
            **key.as_dict(),
            "layer_id": str(layer.id),
            "quantity": str(quantity),
            "unit_cost": str(layer.unit_cost),
            "layer_sequence": layer.layer_sequence,
            "source_type": source_type,
            "source_reference": source_reference,
        })

        return LayerReceipt(
            layer_id=layer.id,
            item_key=key,
            quantity=quantity,
            unit_cost=layer.unit_cost,
            received_at=received_at,
            layer_sequence=layer.layer_sequence,
            previous_quantity=previous_quantity,
        )

    def consume_fifo(
        self,
        key: ItemKey,
        quantity: Decimal,
        consuming_reference: str | None = None,
        terminal_id: str | None = None,
    ) -> ConsumptionResult:
        """
        Take ``quantity`` units from the oldest layers first.

        Every record logged during the call carries ``consuming_reference``
        and ``terminal_id`` (the sales terminal or workflow that sold the
        stock), including records from a nested production run.

        Postconditions:
            total_cost == sum(quantity_taken x unit_cost) over the layers
            touched; this is the cost of goods sold for the consumption.

        Raises:
            InvalidQuantityError: If quantity <= 0.
            InsufficientStockError: If the remaining layers hold less than
                quantity.  No layer is decremented.
        """
        with LogContext.bind(consuming_reference=consuming_reference, terminal_id=terminal_id):
            quantity = to_decimal(quantity, "quantity")
            if quantity <= 0:
                logger.warning("fifo_consumption_rejected", extra={
                    **key.as_dict(), "quantity": str(quantity),
                })
                raise InvalidQuantityError("quantity", quantity, "must be positive")

            state = self.lock_item(key)
            layers = self._remaining_models(key, lock=True)
            snapshots = [to_snapshot(layer) for layer in layers]

            available = available_quantity(snapshots)
            if available < quantity:
                logger.warning("insufficient_stock", extra={
                    **key.as_dict(),
                    "requested": str(quantity),
                    "available": str(available),
                })
                raise InsufficientStockError(key.product_id, key.variant_id, quantity, available)

            plan = plan_fifo_consumption(snapshots, quantity)
            by_id = {layer.id: layer for layer in layers}

            with self._session.begin_nested():
                for step in plan:
                    by_id[step.layer_id].quantity_remaining -= step.quantity_taken
                state.version += 1
                state.updated_at = self._clock.now()
                self._session.flush()

            result = ConsumptionResult.from_plan(key, plan, consuming_reference)
            logger.info("fifo_consumption_completed", extra={
                **key.as_dict(),
                "quantity": str(result.total_quantity),
                "total_cost": str(result.total_cost),
                "layers_touched": result.layer_count,
            })
            return result

    def transfer_ownership(self, source: ItemKey, target: ItemKey) -> int:
        """
        Re-point every layer of ``source`` to ``target`` (item merge).

        Idempotent: once source owns no layers a repeat call moves nothing.
        Transferring an item onto itself is a no-op.

        Returns:
            Number of layers moved.
        """
        if source == target:
            return 0

        states = self.lock_items(source, target)
        layers = list(
            self._session.execute(
                select(InventoryLayerModel)
                .where(_item_filter(source))
                .order_by(*_FIFO_ORDER)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        )
        if not layers:
            logger.info("layer_transfer_noop", extra={
                "source": str(source), "target": str(target),
            })
            return 0

        now = self._clock.now()
        for layer in layers:
            layer.product_id = target.product_id
            layer.variant_id = target.variant_id
        for state in states.values():
            state.version += 1
            state.updated_at = now
        self._session.flush()

        logger.info("layer_ownership_transferred", extra={
            "source": str(source),
            "target": str(target),
            "layer_count": len(layers),
        })
        return len(layers)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _remaining_models(
        self,
        key: ItemKey,
        as_of: datetime | None = None,
        lock: bool = False,
    ) -> list[InventoryLayerModel]:
        stmt = (
            select(InventoryLayerModel)
            .where(_item_filter(key), InventoryLayerModel.quantity_remaining > 0)
            .order_by(*_FIFO_ORDER)
            .execution_options(populate_existing=True)
        )
        if as_of is not None:
            stmt = stmt.where(InventoryLayerModel.received_at <= utc(as_of))
        if lock:
            stmt = stmt.with_for_update()
        return list(self._session.execute(stmt).scalars())

    def _remaining_snapshots(self, key: ItemKey) -> list[LayerSnapshot]:
        return [to_snapshot(layer) for layer in self._remaining_models(key)]

    def remaining_layers(self, key: ItemKey, as_of: datetime | None = None) -> list[LayerSnapshot]:
        """Layers with stock left, oldest first, optionally cut off at ``as_of``."""
        return [to_snapshot(layer) for layer in self._remaining_models(key, as_of=as_of)]

    def all_remaining_layers(self, as_of: datetime | None = None) -> list[LayerSnapshot]:
        """Remaining layers of every item, oldest first."""
        stmt = (
            select(InventoryLayerModel)
            .where(InventoryLayerModel.quantity_remaining > 0)
            .order_by(*_FIFO_ORDER)
        )
        if as_of is not None:
            stmt = stmt.where(InventoryLayerModel.received_at <= utc(as_of))
        return [to_snapshot(layer) for layer in self._session.execute(stmt).scalars()]

    def layer_history(self, key: ItemKey) -> list[LayerSnapshot]:
        """Every layer of the item, depleted ones included, oldest first."""
        stmt = select(InventoryLayerModel).where(_item_filter(key)).order_by(*_FIFO_ORDER)
        return [to_snapshot(layer) for layer in self._session.execute(stmt).scalars()]

    def get_layer(self, layer_id: UUID) -> LayerSnapshot:
        layer = self._session.get(InventoryLayerModel, layer_id)
        if layer is None:
            raise LayerNotFoundError(str(layer_id))
        return to_snapshot(layer)

    def recompute_stock_counter(self, key: ItemKey) -> Decimal:
        """Sum of quantity_remaining across the item's layers.

        The caller writes this into the product registry's cached counter.
        """
        quantity = available_quantity(self._remaining_snapshots(key))
        logger.debug("stock_counter_recomputed", extra={
            **key.as_dict(), "quantity": str(quantity),
        })
        return quantity

    def tracked_items(self) -> list[ItemKey]:
        """Every item that owns at least one layer, in ItemKey order."""
        rows = self._session.execute(
            select(InventoryLayerModel.product_id, InventoryLayerModel.variant_id).distinct()
        ).all()
        return sorted(
            (ItemKey(product_id, variant_id) for product_id, variant_id in rows),
            key=ItemKey.sort_key,
        )
