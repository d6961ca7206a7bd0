"""
Tests for the flush-time guards on inventory layers and audit rows.

Covers:
- Frozen layer fields (cost, received quantity, provenance, sequence)
- quantity_remaining only moves down and stays within bounds
- Layers holding stock cannot be deleted; depleted layers can
- Ownership transfer and consumption still pass the guards
- Stock counter adjustments are append-only
- Listener registration
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import event

from costing_kernel.db.immutability import (
    _check_inventory_layer_immutability,
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from costing_kernel.domain.values import ItemKey
from costing_kernel.exceptions import ImmutabilityViolationError
from costing_kernel.models import (
    InventoryLayerModel,
    LayerSourceType,
    StockCounterAdjustmentModel,
)


@pytest.fixture
def layer(ledger, item_key, session):
    receipt = ledger.append_layer(item_key, Decimal("10"), Decimal("3.5"), source_reference="PO-7")
    return session.get(InventoryLayerModel, receipt.layer_id)


def _flush_blocked(session) -> ImmutabilityViolationError:
    with pytest.raises(ImmutabilityViolationError) as exc_info:
        session.flush()
    session.rollback()
    return exc_info.value


class TestFrozenLayerFields:

    @pytest.mark.parametrize(
        "field, value",
        [
            ("unit_cost", Decimal("4")),
            ("quantity_received", Decimal("12")),
            ("layer_sequence", 10**12),
            ("source_reference", "PO-8"),
            ("source_type", LayerSourceType.ADJUSTMENT),
        ],
    )
    def test_change_blocked(self, session, layer, field, value):
        setattr(layer, field, value)

        error = _flush_blocked(session)

        assert error.entity_type == "InventoryLayer"
        assert field in error.reason
        assert error.code == "IMMUTABILITY_VIOLATION"

    def test_received_at_change_blocked(self, session, layer):
        layer.received_at = layer.received_at - timedelta(days=1)

        error = _flush_blocked(session)

        assert "received_at" in error.reason

    def test_equal_value_is_not_a_change(self, session, layer):
        layer.unit_cost = Decimal("3.50")
        layer.quantity_received = Decimal("10.000000000")

        session.flush()

        assert session.get(InventoryLayerModel, layer.id).unit_cost == Decimal("3.5")

    def test_violation_logged(self, session, layer, captured_logs):
        layer.unit_cost = Decimal("0")

        _flush_blocked(session)

        records = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert len(records) == 1
        assert records[0]["level"] == "ERROR"
        assert records[0]["entity_type"] == "InventoryLayer"
        assert records[0]["field"] == "unit_cost"
        assert records[0]["operation"] == "UPDATE"


class TestRemainingQuantity:

    def test_consumption_passes(self, ledger, item_key, layer):
        ledger.consume_fifo(item_key, Decimal("4"))

        assert ledger.get_layer(layer.id).quantity_remaining == Decimal("6")

    def test_increase_blocked(self, session, ledger, item_key, layer):
        ledger.consume_fifo(item_key, Decimal("4"))
        layer.quantity_remaining = Decimal("10")

        error = _flush_blocked(session)

        assert "cannot increase" in error.reason

    def test_negative_blocked(self, session, layer):
        layer.quantity_remaining = Decimal("-1")

        error = _flush_blocked(session)

        assert "between 0 and quantity_received" in error.reason

    def test_insert_above_received_blocked(self, session, item_key, deterministic_clock):
        now = deterministic_clock.now()
        session.add(InventoryLayerModel(
            product_id=item_key.product_id,
            quantity_received=Decimal("5"),
            quantity_remaining=Decimal("6"),
            unit_cost=Decimal("1"),
            received_at=now,
            created_at=now,
            layer_sequence=10**12,
            source_type=LayerSourceType.PURCHASE,
        ))

        error = _flush_blocked(session)

        assert "between 0 and quantity_received" in error.reason


class TestLayerDelete:

    def test_layer_with_stock_cannot_be_deleted(self, session, layer):
        session.delete(layer)

        error = _flush_blocked(session)

        assert "still holds stock" in error.reason

    def test_depleted_layer_can_be_deleted(self, session, ledger, item_key, layer):
        ledger.consume_fifo(item_key, Decimal("10"))
        layer_id = layer.id

        session.delete(layer)
        session.flush()

        assert session.get(InventoryLayerModel, layer_id) is None


class TestOwnershipTransfer:

    def test_merge_repoints_layers(self, ledger, item_key, layer):
        target = ItemKey(f"target-{uuid4().hex[:6]}")

        assert ledger.transfer_ownership(item_key, target) == 1
        assert ledger.get_layer(layer.id).item_key == target


class TestStockAdjustmentAppendOnly:

    @pytest.fixture
    def adjustment(self, session, item_key, test_actor_id, deterministic_clock):
        row = StockCounterAdjustmentModel(
            product_id=item_key.product_id,
            cached_quantity=Decimal("5"),
            recomputed_quantity=Decimal("3"),
            drift=Decimal("-2"),
            actor_id=test_actor_id,
            reason="cycle count",
            adjusted_at=deterministic_clock.now(),
        )
        session.add(row)
        session.flush()
        return row

    def test_update_blocked(self, session, adjustment):
        adjustment.reason = "rewritten"

        error = _flush_blocked(session)

        assert error.entity_type == "StockCounterAdjustmentModel"
        assert "append-only" in error.reason

    def test_delete_blocked(self, session, adjustment):
        session.delete(adjustment)

        error = _flush_blocked(session)

        assert "cannot be deleted" in error.reason


class TestRegistration:

    def test_registered_by_engine_init(self, db_engine):
        assert event.contains(
            InventoryLayerModel, "before_update", _check_inventory_layer_immutability
        )

    def test_register_twice_is_noop(self, session, layer, captured_logs):
        register_immutability_listeners()
        layer.unit_cost = Decimal("4")

        _flush_blocked(session)

        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert len(blocked) == 1

    def test_unregistered_guards_do_not_fire(self, session, layer):
        unregister_immutability_listeners()
        try:
            layer.unit_cost = Decimal("4")
            session.flush()
        finally:
            register_immutability_listeners()

        assert session.get(InventoryLayerModel, layer.id).unit_cost == Decimal("4")
