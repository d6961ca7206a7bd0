"""
Module: costing_engines.landed_cost
Responsibility:
    Turn a supplier purchase receipt (cartons, pieces, weight, foreign
    currency price) plus shipment-level charges (freight, clearing, customs,
    handling) into a home-currency landed cost per unit and proposed
    wholesale / retail prices.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import costing_kernel domain values, exceptions and logging.
    Persisting layers and the allocation record is the job of
    costing_services.landed_cost_service.

Algorithm:
    1. Every charge is converted to home currency (unchanged when already in
       home currency, else amount x rate) and summed.
    2. Charges are prorated by weight:
           charges_per_weight_unit = total_charges / total_weight
    3. Per line:
           pieces_per_carton    = total_pieces / cartons
           weight_per_carton    = total_weight / cartons
           base_cost_per_unit   = cartons x price_per_carton / total_pieces
                                  (x rate unless priced in home currency)
           charge_per_carton    = weight_per_carton x charges_per_weight_unit
           charge_per_unit      = charge_per_carton / pieces_per_carton
           landed_cost_per_unit = base_cost_per_unit + charge_per_unit
           wholesale_price      = landed x (1 + wholesale_margin_pct / 100)
           retail_price         = landed x (1 + retail_margin_pct / 100)

Invariants enforced:
    - Every division is guarded: a zero denominator yields 0, never an
      exception.
    - A shipment with charges but zero total weight cannot distribute them;
      the computation says so (charges_distributed=False) and a warning is
      logged.
    - The whole batch is validated before anything is computed.

Failure modes:
    - InvalidReceiptLineError: empty batch, a quantity or price given as a
      float or non-number, cartons <= 0, total_pieces <= 0, negative weight
      or price, or a price currency the exchange rate does not cover.
    - InvalidChargeError: float or non-numeric amount, negative amount,
      unknown charge type, or a charge currency the exchange rate does not
      cover.
    - AllocationError: negative selling margin.

Usage:
    calculator = LandedCostCalculator()
    result = calculator.calculate(
        lines=[PurchaseReceiptLine("sku-1", Decimal("10"), Decimal("1000"),
                                   Decimal("500"), Decimal("50"), "USD")],
        charges=[Charge(ChargeType.FREIGHT, Decimal("200"), "USD")],
        exchange_rate=ExchangeRate.of("600", "USD", "XAF"),
        wholesale_margin_pct=Decimal("20"),
        retail_margin_pct=Decimal("50"),
    )
    result.lines[0].landed_cost_per_unit  # Decimal("420")
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum

from costing_engines.tracer import traced_engine
from costing_kernel.db.types import COST_DECIMAL_PLACES, round_amount
from costing_kernel.domain.values import (
    ExchangeRate,
    ItemKey,
    to_decimal,
    validate_currency,
)
from costing_kernel.exceptions import (
    AllocationError,
    InvalidChargeError,
    InvalidCurrencyError,
    InvalidReceiptLineError,
)
from costing_kernel.logging_config import get_logger

logger = get_logger("engines.landed_cost")

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class ChargeType(str, Enum):
    """Shipment-level charge categories."""

    FREIGHT = "freight"
    CLEARING = "clearing"
    CUSTOMS = "customs"
    HANDLING = "handling"
    OTHER = "other"


@dataclass(frozen=True)
class Charge:
    """A shipment-level cost to be spread over the receipt lines by weight."""

    charge_type: ChargeType | str
    amount: Decimal
    currency: str
    description: str = ""


@dataclass(frozen=True)
class PurchaseReceiptLine:
    """One received product line of a supplier shipment."""

    product_id: str
    cartons: Decimal
    total_pieces: Decimal
    total_weight: Decimal
    price_per_carton: Decimal
    price_currency: str
    variant_id: str | None = None
    source_reference: str | None = None

    @property
    def item_key(self) -> ItemKey:
        return ItemKey(self.product_id, self.variant_id)


@dataclass(frozen=True)
class LandedCostLine:
    """Per-line result of a landed cost computation (home currency)."""

    line_index: int
    item_key: ItemKey
    cartons: Decimal
    total_pieces: Decimal
    total_weight: Decimal
    pieces_per_carton: Decimal
    weight_per_carton: Decimal
    base_cost_per_unit: Decimal
    charge_per_carton: Decimal
    charge_per_unit: Decimal
    landed_cost_per_unit: Decimal
    wholesale_price: Decimal
    retail_price: Decimal
    source_reference: str | None = None

    @property
    def total_landed_cost(self) -> Decimal:
        return self.landed_cost_per_unit * self.total_pieces

    @property
    def allocated_charges(self) -> Decimal:
        return self.charge_per_unit * self.total_pieces


@dataclass(frozen=True)
class LandedCostComputation:
    """
    Complete result for one receipt batch.

    Guarantees:
        - charges_distributed is False only when total_charges > 0 and
          total_weight == 0; undistributed_charges then equals total_charges.
    """

    lines: tuple[LandedCostLine, ...]
    charges: tuple[Charge, ...]
    charge_home_amounts: tuple[Decimal, ...]
    exchange_rate: ExchangeRate
    wholesale_margin_pct: Decimal
    retail_margin_pct: Decimal
    total_charges: Decimal
    total_weight: Decimal
    charges_per_weight_unit: Decimal
    charges_distributed: bool
    undistributed_charges: Decimal

    @property
    def total_landed_cost(self) -> Decimal:
        return sum((line.total_landed_cost for line in self.lines), ZERO)

    @property
    def total_pieces(self) -> Decimal:
        return sum((line.total_pieces for line in self.lines), ZERO)


LINE_NUMBER_FIELDS = ("cartons", "total_pieces", "total_weight", "price_per_carton")


def _coerce_number(value, field: str) -> Decimal:
    """to_decimal() that also rejects NaN and infinities (ValueError)."""
    number = to_decimal(value, field)
    if not number.is_finite():
        raise ValueError(f"{field} must be a finite number, got {value!r}")
    return number


def _ratio(numerator: Decimal, denominator: Decimal) -> Decimal:
    if denominator == 0:
        return ZERO
    return numerator / denominator


def _markup(cost: Decimal, margin_pct: Decimal) -> Decimal:
    return cost * (1 + margin_pct / HUNDRED)


class LandedCostCalculator:
    """
    Pure landed cost calculator.

    Contract:
        No I/O and no clock.  Unit costs are rounded to
        ``cost_decimal_places`` (the precision layers are stored at);
        selling prices are left at that precision too and rounded for
        display by the caller.
    """

    def __init__(self, cost_decimal_places: int = COST_DECIMAL_PLACES):
        self._cost_places = cost_decimal_places

    @traced_engine(
        "landed_cost",
        "1.0",
        fingerprint_fields=(
            "lines", "charges", "exchange_rate",
            "wholesale_margin_pct", "retail_margin_pct",
        ),
    )
    def calculate(
        self,
        *,
        lines: Sequence[PurchaseReceiptLine],
        charges: Sequence[Charge],
        exchange_rate: ExchangeRate,
        wholesale_margin_pct: Decimal,
        retail_margin_pct: Decimal,
    ) -> LandedCostComputation:
        """
        Compute landed costs for a whole receipt batch.

        Raises:
            InvalidReceiptLineError, InvalidChargeError, AllocationError
            (see module docstring).  Nothing is computed unless every line
            and charge is valid.
        """
        lines = self.validate_lines(lines, exchange_rate)
        normalized_charges = self.validate_charges(charges, exchange_rate)
        if wholesale_margin_pct < 0 or retail_margin_pct < 0:
            raise AllocationError(
                f"Margins cannot be negative: wholesale {wholesale_margin_pct}, "
                f"retail {retail_margin_pct}"
            )

        home_amounts = tuple(
            exchange_rate.to_home(c.amount, c.currency) for c in normalized_charges
        )
        total_charges = sum(home_amounts, ZERO)
        total_weight = sum((line.total_weight for line in lines), ZERO)
        charges_per_weight_unit = _ratio(total_charges, total_weight)

        charges_distributed = not (total_weight == 0 and total_charges > 0)
        undistributed = ZERO if charges_distributed else total_charges
        if not charges_distributed:
            logger.warning("landed_cost_charges_undistributed", extra={
                "total_charges": str(total_charges),
                "line_count": len(lines),
                "home_currency": exchange_rate.home_currency,
            })

        results = tuple(
            self._compute_line(
                index,
                line,
                exchange_rate,
                charges_per_weight_unit,
                wholesale_margin_pct,
                retail_margin_pct,
            )
            for index, line in enumerate(lines)
        )

        logger.info("landed_cost_computed", extra={
            "line_count": len(results),
            "charge_count": len(normalized_charges),
            "total_charges": str(total_charges),
            "total_weight": str(total_weight),
            "charges_per_weight_unit": str(charges_per_weight_unit),
            "charges_distributed": charges_distributed,
        })

        return LandedCostComputation(
            lines=results,
            charges=normalized_charges,
            charge_home_amounts=home_amounts,
            exchange_rate=exchange_rate,
            wholesale_margin_pct=wholesale_margin_pct,
            retail_margin_pct=retail_margin_pct,
            total_charges=total_charges,
            total_weight=total_weight,
            charges_per_weight_unit=charges_per_weight_unit,
            charges_distributed=charges_distributed,
            undistributed_charges=undistributed,
        )

    def _compute_line(
        self,
        index: int,
        line: PurchaseReceiptLine,
        exchange_rate: ExchangeRate,
        charges_per_weight_unit: Decimal,
        wholesale_margin_pct: Decimal,
        retail_margin_pct: Decimal,
    ) -> LandedCostLine:
        pieces_per_carton = _ratio(line.total_pieces, line.cartons)
        weight_per_carton = _ratio(line.total_weight, line.cartons)

        foreign_cost_per_unit = _ratio(line.cartons * line.price_per_carton, line.total_pieces)
        base_cost_per_unit = exchange_rate.to_home(foreign_cost_per_unit, line.price_currency)

        charge_per_carton = weight_per_carton * charges_per_weight_unit
        charge_per_unit = _ratio(charge_per_carton, pieces_per_carton)

        landed = round_amount(base_cost_per_unit + charge_per_unit, self._cost_places)

        return LandedCostLine(
            line_index=index,
            item_key=line.item_key,
            cartons=line.cartons,
            total_pieces=line.total_pieces,
            total_weight=line.total_weight,
            pieces_per_carton=pieces_per_carton,
            weight_per_carton=weight_per_carton,
            base_cost_per_unit=base_cost_per_unit,
            charge_per_carton=charge_per_carton,
            charge_per_unit=charge_per_unit,
            landed_cost_per_unit=landed,
            wholesale_price=round_amount(_markup(landed, wholesale_margin_pct), self._cost_places),
            retail_price=round_amount(_markup(landed, retail_margin_pct), self._cost_places),
            source_reference=line.source_reference,
        )

    def validate_lines(
        self,
        lines: Sequence[PurchaseReceiptLine],
        exchange_rate: ExchangeRate,
    ) -> tuple[PurchaseReceiptLine, ...]:
        """
        Reject the batch on the first invalid line.

        Returns the lines with every numeric field as a Decimal; ints and
        numeric strings are accepted, floats are not.
        """
        if not lines:
            raise InvalidReceiptLineError(None, "receipt batch contains no lines")

        allowed = {exchange_rate.foreign_currency, exchange_rate.home_currency}
        normalized: list[PurchaseReceiptLine] = []
        for index, line in enumerate(lines):
            try:
                line = replace(line, **{
                    field: _coerce_number(getattr(line, field), field)
                    for field in LINE_NUMBER_FIELDS
                })
            except (TypeError, ValueError) as exc:
                reason = str(exc)
            else:
                reason = self._line_problem(line, exchange_rate, allowed)

            if reason is not None:
                logger.warning("receipt_line_rejected", extra={
                    "line_index": index,
                    "product_id": line.product_id,
                    "reason": reason,
                })
                raise InvalidReceiptLineError(index, reason)
            normalized.append(line)
        return tuple(normalized)

    @staticmethod
    def _line_problem(
        line: PurchaseReceiptLine,
        exchange_rate: ExchangeRate,
        allowed: set[str],
    ) -> str | None:
        if not line.product_id:
            return "product_id is required"
        if line.cartons <= 0:
            return f"cartons must be positive, got {line.cartons}"
        if line.total_pieces <= 0:
            return f"total_pieces must be positive, got {line.total_pieces}"
        if line.total_weight < 0:
            return f"total_weight cannot be negative, got {line.total_weight}"
        if line.price_per_carton < 0:
            return f"price_per_carton cannot be negative, got {line.price_per_carton}"
        try:
            currency = validate_currency(line.price_currency)
        except InvalidCurrencyError:
            currency = None
        if currency is None or currency not in allowed:
            return (
                f"price currency '{line.price_currency}' is not covered by "
                f"exchange rate {exchange_rate}"
            )
        return None

    def validate_charges(
        self,
        charges: Sequence[Charge],
        exchange_rate: ExchangeRate,
    ) -> tuple[Charge, ...]:
        """Validate charges and return them with ChargeType members and upper-case currencies."""
        allowed = {exchange_rate.foreign_currency, exchange_rate.home_currency}
        normalized: list[Charge] = []
        for index, charge in enumerate(charges):
            try:
                charge_type = ChargeType(charge.charge_type)
            except ValueError:
                reason = f"unknown charge type '{charge.charge_type}'"
                logger.warning("charge_rejected", extra={"charge_index": index, "reason": reason})
                raise InvalidChargeError(index, reason) from None

            try:
                amount = _coerce_number(charge.amount, "amount")
            except (TypeError, ValueError) as exc:
                logger.warning("charge_rejected", extra={"charge_index": index, "reason": str(exc)})
                raise InvalidChargeError(index, str(exc)) from exc

            if amount < 0:
                reason = f"amount cannot be negative, got {amount}"
                logger.warning("charge_rejected", extra={"charge_index": index, "reason": reason})
                raise InvalidChargeError(index, reason)

            try:
                currency = validate_currency(charge.currency)
            except InvalidCurrencyError as exc:
                logger.warning("charge_rejected", extra={
                    "charge_index": index,
                    "reason": str(exc),
                })
                raise InvalidChargeError(index, str(exc)) from exc
            if currency not in allowed:
                reason = f"currency '{currency}' is not covered by exchange rate {exchange_rate}"
                logger.warning("charge_rejected", extra={"charge_index": index, "reason": reason})
                raise InvalidChargeError(index, reason)

            normalized.append(
                Charge(
                    charge_type=charge_type,
                    amount=amount,
                    currency=currency,
                    description=charge.description,
                )
            )
        return tuple(normalized)
