"""
Tests for LandedCostAllocator.

Covers:
- Layers, running averages and audit rows written per allocation
- Price proposals rounded to price precision
- All-or-nothing behaviour on an invalid line
- Zero-weight shipments
- Home currency mismatch
- Configured margin defaults
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from costing_engines.landed_cost import Charge, ChargeType, PurchaseReceiptLine
from costing_kernel.domain.values import ExchangeRate
from costing_kernel.exceptions import (
    InvalidChargeError,
    InvalidExchangeRateError,
    InvalidReceiptLineError,
)
from costing_kernel.models import (
    InventoryLayerModel,
    LandedCostAllocationModel,
    LandedCostChargeModel,
)


def receipt_line(product_id, cartons="10", pieces="1000", weight="500", price="50",
                 currency="USD", variant_id=None, reference=None):
    return PurchaseReceiptLine(
        product_id=product_id,
        cartons=Decimal(cartons),
        total_pieces=Decimal(pieces),
        total_weight=Decimal(weight),
        price_per_carton=Decimal(price),
        price_currency=currency,
        variant_id=variant_id,
        source_reference=reference,
    )


def freight(amount="200", currency="USD"):
    return Charge(ChargeType.FREIGHT, Decimal(amount), currency, "sea freight")


@pytest.fixture
def product_id():
    return f"sku-{uuid4().hex[:8]}"


class TestAllocate:

    def test_receives_one_layer_per_line(self, allocator, ledger, usd_rate, product_id):
        result = allocator.allocate([receipt_line(product_id)], [freight()], usd_rate, source_reference="SHIP-1")

        layers = ledger.remaining_layers(result.lines[0].item_key)
        assert len(layers) == 1
        assert layers[0].quantity_remaining == Decimal("1000")
        assert layers[0].unit_cost == Decimal("420")
        assert layers[0].source_reference == "SHIP-1"
        assert result.receipts[0].running_average_cost == Decimal("420")

    def test_line_reference_overrides_batch_reference(self, allocator, ledger, usd_rate, product_id):
        allocator.allocate(
            [receipt_line(product_id, reference="PO-77")], [], usd_rate, source_reference="SHIP-1"
        )

        layer = ledger.layer_history(result_key(product_id))[0]
        assert layer.source_reference == "PO-77"

    def test_layers_stamped_with_clock(self, allocator, ledger, usd_rate, product_id, deterministic_clock):
        allocator.allocate([receipt_line(product_id)], [], usd_rate)

        layer = ledger.layer_history(result_key(product_id))[0]
        assert layer.received_at == deterministic_clock.now()

    def test_price_proposals(self, allocator, usd_rate, product_id):
        result = allocator.allocate([receipt_line(product_id)], [freight()], usd_rate)

        proposal = result.price_proposals[0]
        assert proposal.landed_cost_per_unit == Decimal("420")
        assert str(proposal.wholesale_price) == "504.00"
        assert str(proposal.retail_price) == "630.00"
        assert proposal.currency == "XAF"
        assert proposal.allocation_id == result.allocation_id

    def test_proposals_applied_by_registry(self, allocator, registry, usd_rate, product_id):
        result = allocator.allocate([receipt_line(product_id)], [freight()], usd_rate)

        for proposal in result.price_proposals:
            registry.apply_price_proposal(proposal)

        record = registry.get(result.lines[0].item_key)
        assert record.retail_price == Decimal("630")
        assert len(record.price_history) == 1

    def test_explicit_margins_override_defaults(self, allocator, usd_rate, product_id):
        result = allocator.allocate(
            [receipt_line(product_id)], [freight()], usd_rate,
            wholesale_margin_pct=Decimal("10"), retail_margin_pct=Decimal("100"),
        )

        assert result.lines[0].wholesale_price == Decimal("462")
        assert result.lines[0].retail_price == Decimal("840")

    def test_audit_rows_written(self, allocator, session, usd_rate, product_id):
        result = allocator.allocate(
            [receipt_line(product_id), receipt_line(product_id, variant_id="red", weight="250")],
            [freight(), Charge(ChargeType.CUSTOMS, Decimal("15000"), "XAF")],
            usd_rate,
            source_reference="SHIP-9",
        )

        header = session.get(LandedCostAllocationModel, result.allocation_id)
        assert header.line_count == 2
        assert header.source_reference == "SHIP-9"
        assert header.exchange_rate == Decimal("600")
        assert header.total_charges == Decimal("135000")
        assert header.charges_distributed is True

        charges = session.execute(
            select(LandedCostChargeModel)
            .where(LandedCostChargeModel.allocation_id == result.allocation_id)
            .order_by(LandedCostChargeModel.position)
        ).scalars().all()
        assert [(c.charge_type, c.home_amount) for c in charges] == [
            ("freight", Decimal("120000")),
            ("customs", Decimal("15000")),
        ]

    def test_allocation_logged_with_context(self, allocator, usd_rate, product_id, captured_logs):
        result = allocator.allocate([receipt_line(product_id)], [freight()], usd_rate)

        records = captured_logs()
        allocated = [r for r in records if r["message"] == "landed_cost_allocated"]
        assert len(allocated) == 1
        assert allocated[0]["allocation_id"] == str(result.allocation_id)
        appended = [r for r in records if r["message"] == "layer_appended"]
        assert all(r["allocation_id"] == str(result.allocation_id) for r in appended)


class TestAllOrNothing:

    def test_invalid_line_writes_no_layers(self, allocator, ledger, session, usd_rate, product_id):
        good = receipt_line(product_id)
        bad = receipt_line(product_id, variant_id="blue", pieces="0")

        with pytest.raises(InvalidReceiptLineError) as exc_info:
            allocator.allocate([good, bad], [freight()], usd_rate)

        assert exc_info.value.line_index == 1
        assert ledger.layer_history(good.item_key) == []
        assert session.execute(
            select(InventoryLayerModel).where(InventoryLayerModel.product_id == product_id)
        ).first() is None

    def test_invalid_charge_writes_nothing(self, allocator, ledger, usd_rate, product_id):
        with pytest.raises(InvalidChargeError):
            allocator.allocate(
                [receipt_line(product_id)],
                [freight(), Charge(ChargeType.OTHER, Decimal("-3"), "USD")],
                usd_rate,
            )

        assert ledger.layer_history(result_key(product_id)) == []

    def test_home_currency_mismatch_rejected(self, allocator, ledger, product_id):
        rate = ExchangeRate.of("0.0016", "XAF", "USD")

        with pytest.raises(InvalidExchangeRateError):
            allocator.allocate([receipt_line(product_id, currency="XAF")], [], rate)

        assert ledger.layer_history(result_key(product_id)) == []


class TestZeroWeightShipment:

    def test_recorded_with_charges_flagged(self, allocator, session, ledger, usd_rate, product_id):
        result = allocator.allocate(
            [receipt_line(product_id, weight="0")],
            [freight("50")],
            usd_rate,
        )

        assert result.charges_distributed is False
        assert result.undistributed_charges == Decimal("30000")
        assert ledger.remaining_layers(result_key(product_id))[0].unit_cost == Decimal("300")
        header = session.get(LandedCostAllocationModel, result.allocation_id)
        assert header.charges_distributed is False


def result_key(product_id):
    return receipt_line(product_id).item_key
