"""
Tests for ProductionService (conversion of input stock into outputs).
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from costing_kernel.domain.values import ItemKey
from costing_kernel.exceptions import InsufficientStockError, InvalidQuantityError
from costing_kernel.models import LayerSourceType
from costing_services import ProductionOutput
from costing_services.production_service import split_value


def key(prefix):
    return ItemKey(f"{prefix}-{uuid4().hex[:6]}")


class TestSplitValue:

    def test_remainder_to_last_share(self):
        shares = split_value(Decimal("10"), [Decimal("1")] * 3, 2)

        assert shares == (Decimal("3.33"), Decimal("3.33"), Decimal("3.34"))
        assert sum(shares) == Decimal("10")

    def test_proportional(self):
        assert split_value(Decimal("100"), [Decimal("3"), Decimal("1")]) == (
            Decimal("75.000000000"), Decimal("25.000000000"),
        )

    def test_zero_weights_rejected(self):
        with pytest.raises(ValueError):
            split_value(Decimal("1"), [Decimal("0")])


class TestConvert:

    def test_split_by_quantity(self, production_service, receive, ledger, valuation_service):
        bolt = key("bolt")
        short, long = key("short"), key("long")
        receive(bolt, 10, 30)

        result = production_service.convert(
            bolt, Decimal("4"),
            [ProductionOutput(short, Decimal("6")), ProductionOutput(long, Decimal("2"))],
            source_reference="CUT-1",
        )

        assert result.consumed_value == Decimal("120")
        assert result.output_values == (Decimal("90.000000000"), Decimal("30.000000000"))
        assert result.total_output_value == result.consumed_value
        assert valuation_service.fifo_value(short).value == Decimal("90")
        assert valuation_service.running_average_cost(long) == Decimal("15")
        assert ledger.recompute_stock_counter(bolt) == Decimal("6")
        layer = ledger.remaining_layers(short)[0]
        assert layer.source_type == LayerSourceType.PRODUCTION
        assert layer.source_reference == "CUT-1"

    def test_split_by_cost_share(self, production_service, receive, valuation_service):
        hide = key("hide")
        leather, scrap = key("leather"), key("scrap")
        receive(hide, 1, 100)

        result = production_service.convert(
            hide, Decimal("1"),
            [
                ProductionOutput(leather, Decimal("4"), cost_share=Decimal("9")),
                ProductionOutput(scrap, Decimal("10"), cost_share=Decimal("1")),
            ],
        )

        assert result.output_values == (Decimal("90.000000000"), Decimal("10.000000000"))
        assert valuation_service.running_average_cost(leather) == Decimal("22.5")
        assert valuation_service.running_average_cost(scrap) == Decimal("1")

    def test_uneven_split_stored_within_rounding(self, production_service, receive, ledger):
        batch = key("batch")
        portion = key("portion")
        receive(batch, 1, 100)

        result = production_service.convert(batch, Decimal("1"), [ProductionOutput(portion, Decimal("3"))])

        unit_cost = ledger.remaining_layers(portion)[0].unit_cost
        assert unit_cost == Decimal("33.333333333")
        assert result.total_output_value == result.consumed_value == Decimal("100")
        assert result.layer_value == Decimal("99.999999999")
        assert abs(result.layer_value - result.consumed_value) <= 3 * Decimal("0.5E-9")

    def test_uneven_shared_split_bounded_per_output(self, production_service, receive):
        vat = key("vat")
        outputs = [
            ProductionOutput(key("jar"), Decimal("3"), cost_share=Decimal("1")),
            ProductionOutput(key("tub"), Decimal("7"), cost_share=Decimal("1")),
            ProductionOutput(key("cup"), Decimal("11"), cost_share=Decimal("1")),
        ]
        receive(vat, 1, 100)

        result = production_service.convert(vat, Decimal("1"), outputs)

        assert result.total_output_value == Decimal("100")
        for output, value, receipt in zip(outputs, result.output_values, result.receipts):
            assert abs(receipt.total_cost - value) <= output.quantity * Decimal("0.5E-9")
        assert abs(result.layer_value - result.consumed_value) <= 21 * Decimal("0.5E-9")

    def test_consumes_fifo_across_layers(self, production_service, receive, deterministic_clock):
        flour = key("flour")
        bread = key("bread")
        receive(flour, 2, 10)
        deterministic_clock.advance_days(1)
        receive(flour, 2, 20)

        result = production_service.convert(flour, Decimal("3"), [ProductionOutput(bread, Decimal("6"))])

        assert result.consumed_value == Decimal("40")
        assert result.consumption.layer_count == 2

    def test_insufficient_input_leaves_everything_untouched(
        self, production_service, receive, ledger
    ):
        bolt = key("bolt")
        out = key("out")
        receive(bolt, 2, 5)

        with pytest.raises(InsufficientStockError):
            production_service.convert(bolt, Decimal("3"), [ProductionOutput(out, Decimal("1"))])

        assert ledger.recompute_stock_counter(bolt) == Decimal("2")
        assert ledger.layer_history(out) == []

    @pytest.mark.parametrize(
        "outputs_factory, error",
        [
            (lambda k: [], ValueError),
            (lambda k: [ProductionOutput(k, Decimal("0"))], InvalidQuantityError),
            (lambda k: [ProductionOutput(k, Decimal("1"), Decimal("1")),
                        ProductionOutput(ItemKey("x"), Decimal("1"))], ValueError),
            (lambda k: [ProductionOutput(k, Decimal("1"), Decimal("-1"))], ValueError),
            (lambda k: [ProductionOutput(k, Decimal("1"), Decimal("0"))], ValueError),
        ],
    )
    def test_invalid_outputs_rejected(self, production_service, receive, ledger, outputs_factory, error):
        bolt = key("bolt")
        receive(bolt, 2, 5)

        with pytest.raises(error):
            production_service.convert(bolt, Decimal("1"), outputs_factory(key("out")))

        assert ledger.recompute_stock_counter(bolt) == Decimal("2")

    def test_conversion_logged(self, production_service, receive, captured_logs):
        bolt = key("bolt")
        receive(bolt, 1, 8)

        production_service.convert(bolt, Decimal("1"), [ProductionOutput(key("out"), Decimal("2"))])

        records = [r for r in captured_logs() if r["message"] == "production_converted"]
        assert records[0]["output_count"] == 1
        assert Decimal(records[0]["consumed_value"]) == Decimal("8")
