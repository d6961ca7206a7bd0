"""
LandedCostAllocator -- turns a supplier receipt into costed inventory layers.

Responsibility:
    Runs the landed cost calculation for a receipt batch, then records the
    result: one inventory layer per line (through ValuationService so the
    running average moves with it), an allocation header and its charges
    for audit, and a price proposal per line for the caller to apply.

Architecture position:
    Services -- stateful orchestration.  The arithmetic is
    costing_engines.landed_cost.LandedCostCalculator; persistence of layers
    goes through ValuationService / InventoryLayerLedger.

Invariants enforced:
    - All or nothing: every line and charge is validated before anything is
      written, and all writes (layers, averages, allocation record) share one
      savepoint.  A failure leaves no layer behind.
    - Items of a batch are locked in ItemKey order before any receipt.
    - Prices are only proposed; the allocator never writes the catalogue.

Failure modes:
    - InvalidReceiptLineError, InvalidChargeError, AllocationError from the
      calculator (before any write).
    - InvalidExchangeRateError when the rate's home currency is not the
      configured home currency.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from costing_config.schema import CostingSettings
from costing_engines.landed_cost import (
    Charge,
    LandedCostCalculator,
    LandedCostComputation,
    LandedCostLine,
    PurchaseReceiptLine,
)
from costing_kernel.db.types import round_amount
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.domain.values import ExchangeRate
from costing_kernel.exceptions import InvalidExchangeRateError
from costing_kernel.logging_config import LogContext, get_logger
from costing_kernel.models import (
    LandedCostAllocationModel,
    LandedCostChargeModel,
    LayerSourceType,
)
from costing_services.registry import PriceProposal
from costing_services.valuation_service import ReceiptRecord, ValuationService

logger = get_logger("services.landed_cost")


@dataclass(frozen=True)
class AllocationResult:
    """Everything an allocation produced."""

    allocation_id: UUID
    computation: LandedCostComputation
    receipts: tuple[ReceiptRecord, ...]
    price_proposals: tuple[PriceProposal, ...]

    @property
    def lines(self) -> tuple[LandedCostLine, ...]:
        return self.computation.lines

    @property
    def charges_distributed(self) -> bool:
        return self.computation.charges_distributed

    @property
    def undistributed_charges(self) -> Decimal:
        return self.computation.undistributed_charges

    @property
    def total_charges(self) -> Decimal:
        return self.computation.total_charges

    @property
    def total_landed_cost(self) -> Decimal:
        return self.computation.total_landed_cost


class LandedCostAllocator:
    """
    Allocates shipment charges and records the landed cost layers.

    Contract:
        Flushes within the caller's transaction, never commits.
    """

    def __init__(
        self,
        session: Session,
        valuation: ValuationService,
        settings: CostingSettings | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._valuation = valuation
        self._settings = settings or CostingSettings()
        self._clock = clock or SystemClock()
        self._calculator = LandedCostCalculator(
            cost_decimal_places=self._settings.cost_decimal_places,
        )

    def allocate(
        self,
        lines: Sequence[PurchaseReceiptLine],
        charges: Sequence[Charge],
        exchange_rate: ExchangeRate,
        wholesale_margin_pct: Decimal | None = None,
        retail_margin_pct: Decimal | None = None,
        source_reference: str | None = None,
    ) -> AllocationResult:
        """
        Allocate ``charges`` over ``lines`` and receive the stock.

        Margins default to the configured wholesale / retail margins.
        Each line's source_reference falls back to the batch reference.
        """
        if wholesale_margin_pct is None:
            wholesale_margin_pct = self._settings.default_wholesale_margin_pct
        if retail_margin_pct is None:
            retail_margin_pct = self._settings.default_retail_margin_pct

        if exchange_rate.home_currency != self._settings.home_currency:
            logger.warning("allocation_rejected_home_currency", extra={
                "rate_home_currency": exchange_rate.home_currency,
                "configured_home_currency": self._settings.home_currency,
            })
            raise InvalidExchangeRateError(
                exchange_rate.rate,
                f"home currency {exchange_rate.home_currency} does not match "
                f"configured {self._settings.home_currency}",
            )

        computation = self._calculator.calculate(
            lines=lines,
            charges=charges,
            exchange_rate=exchange_rate,
            wholesale_margin_pct=wholesale_margin_pct,
            retail_margin_pct=retail_margin_pct,
        )

        allocation_id = uuid4()
        with LogContext.bind(allocation_id=str(allocation_id)):
            receipts = self._record(allocation_id, computation, source_reference)
            proposals = tuple(
                self._propose(allocation_id, line, exchange_rate.home_currency)
                for line in computation.lines
            )

            logger.info("landed_cost_allocated", extra={
                "line_count": len(computation.lines),
                "total_charges": str(computation.total_charges),
                "total_landed_cost": str(computation.total_landed_cost),
                "charges_distributed": computation.charges_distributed,
                "source_reference": source_reference,
            })

        return AllocationResult(
            allocation_id=allocation_id,
            computation=computation,
            receipts=receipts,
            price_proposals=proposals,
        )

    def _record(
        self,
        allocation_id: UUID,
        computation: LandedCostComputation,
        source_reference: str | None,
    ) -> tuple[ReceiptRecord, ...]:
        received_at = self._clock.now()
        rate = computation.exchange_rate

        with self._session.begin_nested():
            self._valuation.ledger.lock_items(*(line.item_key for line in computation.lines))

            header = LandedCostAllocationModel(
                id=allocation_id,
                allocated_at=received_at,
                source_reference=source_reference,
                home_currency=rate.home_currency,
                foreign_currency=rate.foreign_currency,
                exchange_rate=rate.rate,
                wholesale_margin_pct=computation.wholesale_margin_pct,
                retail_margin_pct=computation.retail_margin_pct,
                total_charges=computation.total_charges,
                total_weight=computation.total_weight,
                charges_distributed=computation.charges_distributed,
                line_count=len(computation.lines),
                total_landed_cost=computation.total_landed_cost,
            )
            self._session.add(header)
            for position, (charge, home_amount) in enumerate(
                zip(computation.charges, computation.charge_home_amounts)
            ):
                self._session.add(
                    LandedCostChargeModel(
                        allocation_id=allocation_id,
                        position=position,
                        charge_type=charge.charge_type.value,
                        description=charge.description,
                        amount=charge.amount,
                        currency=charge.currency,
                        home_amount=home_amount,
                    )
                )
            self._session.flush()

            receipts = tuple(
                self._valuation.receive_stock(
                    line.item_key,
                    line.total_pieces,
                    line.landed_cost_per_unit,
                    source_reference=line.source_reference or source_reference,
                    source_type=LayerSourceType.PURCHASE,
                    received_at=received_at,
                )
                for line in computation.lines
            )
        return receipts

    def _propose(
        self,
        allocation_id: UUID,
        line: LandedCostLine,
        currency: str,
    ) -> PriceProposal:
        places = self._settings.price_decimal_places
        return PriceProposal(
            item_key=line.item_key,
            landed_cost_per_unit=round_amount(line.landed_cost_per_unit, places),
            wholesale_price=round_amount(line.wholesale_price, places),
            retail_price=round_amount(line.retail_price, places),
            currency=currency,
            allocation_id=allocation_id,
        )
