"""
Tests for StockReconciliationService.

Covers:
- Drift detection between the registry's cached counter and the layer sum
- Drift introduced by an item merge
- Audited resynchronisation
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from costing_kernel.domain.values import ItemKey
from costing_kernel.exceptions import StockDriftError
from costing_kernel.models import StockCounterAdjustmentModel


class TestCheck:

    def test_in_sync_returns_none(self, reconciliation_service, registry, receive, item_key):
        receive(item_key, 5, 1)
        registry.write_stock_quantity(item_key, Decimal("5"))

        assert reconciliation_service.check(item_key) is None
        reconciliation_service.assert_in_sync(item_key)

    def test_overstated_cache(self, reconciliation_service, registry, receive, item_key, ledger):
        receive(item_key, 5, 1)
        registry.write_stock_quantity(item_key, Decimal("5"))
        ledger.consume_fifo(item_key, Decimal("2"))

        finding = reconciliation_service.check(item_key)

        assert finding.cached_quantity == Decimal("5")
        assert finding.actual_quantity == Decimal("3")
        assert finding.drift == Decimal("2")

    def test_assert_in_sync_raises(self, reconciliation_service, receive, item_key):
        receive(item_key, 4, 1)

        with pytest.raises(StockDriftError) as exc_info:
            reconciliation_service.assert_in_sync(item_key)

        assert exc_info.value.drift == Decimal("-4")
        assert exc_info.value.code == "STOCK_DRIFT"

    def test_merge_leaves_drift(self, reconciliation_service, valuation_service, registry, receive):
        source = ItemKey(f"dup-{uuid4().hex[:6]}")
        target = ItemKey(f"main-{uuid4().hex[:6]}")
        receive(source, 3, 1)
        receive(target, 7, 1)
        registry.write_stock_quantity(source, Decimal("3"))
        registry.write_stock_quantity(target, Decimal("7"))

        valuation_service.merge_items(source, target)
        findings = reconciliation_service.check_all([source, target])

        assert {(f.item_key, f.drift) for f in findings} == {
            (source, Decimal("3")),
            (target, Decimal("-3")),
        }

    def test_check_all_defaults_to_tracked_items(
        self, reconciliation_service, registry, receive, item_key, captured_logs
    ):
        receive(item_key, 2, 1)

        findings = reconciliation_service.check_all()

        assert [f.item_key for f in findings] == [item_key]
        warnings = [r for r in captured_logs() if r["message"] == "stock_drift_detected"]
        assert warnings[0]["level"] == "WARNING"


class TestResynchronize:

    def test_writes_registry_and_adjustment(
        self, reconciliation_service, registry, receive, item_key, session, test_actor_id,
        deterministic_clock,
    ):
        receive(item_key, 6, 1)
        registry.write_stock_quantity(item_key, Decimal("9"))

        adjustment = reconciliation_service.resynchronize(item_key, test_actor_id, "  monthly count  ")

        assert registry.cached_stock_quantity(item_key) == Decimal("6")
        assert adjustment.drift == Decimal("3")
        assert adjustment.reason == "monthly count"
        assert adjustment.adjusted_at == deterministic_clock.now()

        row = session.execute(
            select(StockCounterAdjustmentModel).where(
                StockCounterAdjustmentModel.product_id == item_key.product_id
            )
        ).scalar_one()
        assert row.id == adjustment.adjustment_id
        assert row.actor_id == test_actor_id
        assert row.recomputed_quantity == Decimal("6")
        assert reconciliation_service.check(item_key) is None

    def test_reason_required(self, reconciliation_service, item_key, test_actor_id):
        with pytest.raises(ValueError):
            reconciliation_service.resynchronize(item_key, test_actor_id, " ")

    def test_resync_of_synced_item_records_zero_drift(
        self, reconciliation_service, registry, receive, item_key, test_actor_id
    ):
        receive(item_key, 1, 1)
        registry.write_stock_quantity(item_key, Decimal("1"))

        adjustment = reconciliation_service.resynchronize(item_key, test_actor_id, "audit")

        assert adjustment.drift == Decimal("0")
