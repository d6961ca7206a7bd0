"""
StockReconciliationService -- drift detection between the catalogue's cached
stock counter and the ledger.

Responsibility:
    The product registry keeps a denormalised stock quantity per item.  The
    ledger's sum of remaining layer quantities is the source of truth.  This
    service reports disagreement (drift) and performs the explicit, audited
    correction that writes the recomputed quantity back to the registry.

Architecture position:
    Services -- stateful orchestration over InventoryLayerLedger and the
    ProductRegistry port.

Invariants enforced:
    - Drift is never corrected silently: check / check_all only report,
      assert_in_sync raises, and resynchronize always writes an adjustment
      row naming the actor and reason.
    - resynchronize is idempotent: once in sync, a repeat call writes a
      zero-drift adjustment and leaves the counter unchanged.

Failure modes:
    - StockDriftError from assert_in_sync.
    - ValueError from resynchronize on an empty reason.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.domain.values import ItemKey
from costing_kernel.exceptions import StockDriftError
from costing_kernel.logging_config import LogContext, get_logger
from costing_kernel.models import StockCounterAdjustmentModel
from costing_services.layer_ledger import InventoryLayerLedger
from costing_services.registry import ProductRegistry

logger = get_logger("services.reconciliation")


@dataclass(frozen=True)
class StockDriftFinding:
    """Cached counter vs. layer sum for one item."""

    item_key: ItemKey
    cached_quantity: Decimal
    actual_quantity: Decimal

    @property
    def drift(self) -> Decimal:
        """Positive when the cache overstates stock."""
        return self.cached_quantity - self.actual_quantity


@dataclass(frozen=True)
class StockCounterAdjustment:
    """Record of one explicit resynchronisation."""

    adjustment_id: UUID
    item_key: ItemKey
    cached_quantity: Decimal
    recomputed_quantity: Decimal
    drift: Decimal
    actor_id: UUID
    reason: str
    adjusted_at: datetime


class StockReconciliationService:

    def __init__(
        self,
        session: Session,
        ledger: InventoryLayerLedger,
        registry: ProductRegistry,
        clock: Clock | None = None,
    ):
        self._session = session
        self._ledger = ledger
        self._registry = registry
        self._clock = clock or SystemClock()

    def _compare(self, key: ItemKey) -> StockDriftFinding:
        return StockDriftFinding(
            item_key=key,
            cached_quantity=self._registry.cached_stock_quantity(key),
            actual_quantity=self._ledger.recompute_stock_counter(key),
        )

    def check(self, key: ItemKey) -> StockDriftFinding | None:
        """Return a finding if the cached counter disagrees with the layers."""
        finding = self._compare(key)
        if finding.drift == 0:
            return None
        logger.warning("stock_drift_detected", extra={
            **key.as_dict(),
            "cached_quantity": str(finding.cached_quantity),
            "actual_quantity": str(finding.actual_quantity),
            "drift": str(finding.drift),
        })
        return finding

    def check_all(self, keys: Iterable[ItemKey] | None = None) -> list[StockDriftFinding]:
        """Check the given items, or every item that owns layers."""
        items = list(keys) if keys is not None else self._ledger.tracked_items()
        findings = [f for f in (self.check(key) for key in items) if f is not None]
        logger.info("stock_reconciliation_completed", extra={
            "items_checked": len(items),
            "drift_count": len(findings),
        })
        return findings

    def assert_in_sync(self, key: ItemKey) -> None:
        finding = self.check(key)
        if finding is not None:
            raise StockDriftError(
                key.product_id,
                key.variant_id,
                finding.cached_quantity,
                finding.actual_quantity,
            )

    def resynchronize(self, key: ItemKey, actor_id: UUID, reason: str) -> StockCounterAdjustment:
        """
        Write the ledger's layer sum into the registry's cached counter and
        record the correction.

        The item is locked while the sum is read so no consumption can
        slip in between the read and the write.
        """
        if not reason or not reason.strip():
            raise ValueError("A reason is required to resynchronize a stock counter")

        with LogContext.bind(actor_id=str(actor_id)):
            self._ledger.lock_item(key)
            finding = self._compare(key)
            now = self._clock.now()

            row = StockCounterAdjustmentModel(
                product_id=key.product_id,
                variant_id=key.variant_id,
                cached_quantity=finding.cached_quantity,
                recomputed_quantity=finding.actual_quantity,
                drift=finding.drift,
                actor_id=actor_id,
                reason=reason.strip(),
                adjusted_at=now,
            )
            self._session.add(row)
            self._session.flush()
            self._registry.write_stock_quantity(key, finding.actual_quantity)

            logger.info("stock_counter_resynchronized", extra={
                **key.as_dict(),
                "adjustment_id": str(row.id),
                "cached_quantity": str(finding.cached_quantity),
                "recomputed_quantity": str(finding.actual_quantity),
                "drift": str(finding.drift),
            })
            return StockCounterAdjustment(
                adjustment_id=row.id,
                item_key=key,
                cached_quantity=finding.cached_quantity,
                recomputed_quantity=finding.actual_quantity,
                drift=finding.drift,
                actor_id=actor_id,
                reason=row.reason,
                adjusted_at=now,
            )
