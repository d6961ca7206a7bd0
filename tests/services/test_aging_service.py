"""
Tests for StockAgingService over real ledger layers.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from costing_config.schema import AgingBucketDef, AgingSettings
from costing_engines.aging import AgingRisk
from costing_kernel.domain.values import ItemKey
from costing_services import StockAgingService


@pytest.fixture
def stocked(receive, deterministic_clock):
    """Four layers aged 200, 95, 40 and 3 days at the clock's now."""
    now = deterministic_clock.now()
    keys = [ItemKey(f"age-{uuid4().hex[:6]}") for _ in range(4)]
    for key, days, cost in zip(keys, (200, 95, 40, 3), (10, 20, 30, 40)):
        receive(key, 2, cost, received_at=now - timedelta(days=days))
    return keys


class TestReport:

    def test_oldest_first(self, aging_service, stocked):
        report = aging_service.report()

        assert [item.age_days for item in report.items] == [200, 95, 40, 3]
        assert [item.layer.item_key for item in report.items] == stocked

    def test_risk_levels(self, aging_service, stocked):
        risks = [item.risk for item in aging_service.report().items]

        assert risks == [AgingRisk.CRITICAL, AgingRisk.HIGH, AgingRisk.LOW, AgingRisk.LOW]

    def test_values(self, aging_service, stocked):
        report = aging_service.report()

        assert report.total_value == Decimal("200")
        assert report.value_by_bucket()["180+ days"] == Decimal("20")

    def test_filter_by_risk(self, aging_service, stocked):
        report = aging_service.report(risk="critical")

        assert report.item_count == 1
        assert report.items[0].layer.item_key == stocked[0]

    def test_filter_by_bucket(self, aging_service, stocked):
        report = aging_service.report(bucket="30-60 days")

        assert [item.age_days for item in report.items] == [40]

    def test_depleted_stock_not_reported(self, aging_service, ledger, stocked):
        ledger.consume_fifo(stocked[0], Decimal("2"))

        assert aging_service.report(risk=AgingRisk.CRITICAL).item_count == 0

    def test_explicit_as_of(self, aging_service, stocked, deterministic_clock):
        report = aging_service.report(as_of=deterministic_clock.now() - timedelta(days=50))

        # layers received after the cutoff are left out, ages shift by 50 days
        assert [item.age_days for item in report.items] == [150, 45]

    def test_ages_move_with_clock(self, aging_service, stocked, deterministic_clock):
        deterministic_clock.advance_days(90)

        ages = [item.age_days for item in aging_service.classify()]

        assert ages == [290, 185, 130, 93]

    def test_report_logged(self, aging_service, stocked, captured_logs):
        aging_service.report()

        records = [r for r in captured_logs() if r["message"] == "stock_aging_report_generated"]
        assert records[0]["item_count"] == 4
        assert records[0]["critical_count"] == 1


class TestConfiguredBuckets:

    def test_default_config_matches_standard_buckets(self, aging_service):
        assert [b.min_days for b in aging_service.buckets] == [0, 30, 60, 90, 180]

    def test_custom_buckets(self, ledger, stocked, deterministic_clock):
        settings = AgingSettings(buckets=(
            AgingBucketDef("current", 0, "low"),
            AgingBucketDef("dead", 90, "critical"),
        ))
        service = StockAgingService(ledger, settings=settings, clock=deterministic_clock)

        report = service.report()

        assert report.count_by_risk()[AgingRisk.CRITICAL] == 2
        assert set(report.value_by_bucket()) == {"current", "dead"}
