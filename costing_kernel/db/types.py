"""
Module: costing_kernel.db.types
Responsibility: Column type aliases, the exact decimal and timezone-preserving
    datetime types, and the sanctioned rounding helper for costs, quantities
    and prices.
Architecture position: Kernel > DB.  May be imported by models/, domain/ and
    outer layers.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats: every cost and quantity is a Decimal with explicit precision,
      on every backend.  SQLite has no exact numeric storage (NUMERIC columns
      are held as binary floats), so ExactDecimal stores canonical decimal
      text there and native NUMERIC on PostgreSQL.
    - round_amount() is the only rounding function used for stored unit costs
      and proposed selling prices.
    - UTCDateTime never returns a naive datetime.  SQLite drops the offset on
      storage, so values are normalised to UTC on the way in and re-tagged as
      UTC on the way out.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Annotated

from sqlalchemy import DateTime, Numeric, String
from sqlalchemy.types import TypeDecorator


class ExactDecimal(TypeDecorator):
    """
    Fixed-scale decimal column that never passes through a float.

    Contract:
        ExactDecimal(precision, scale) behaves as Numeric(precision, scale).
        Bound values are quantized to ``scale`` (half-up); loaded values come
        back as Decimal at that scale.
    Guarantees:
        - On SQLite the stored text is canonical: no exponent, no trailing
          zeros, zero stored as '0'.  Comparing such a column with 0 in SQL
          (``quantity_remaining > 0``, CHECK ``unit_cost >= 0``) is therefore
          correct under SQLite's text ordering.  Comparisons between two
          ExactDecimal columns are NOT; keep those on PostgreSQL or in Python.
    Raises:
        TypeError: on bind of a float.
    """

    impl = Numeric
    cache_ok = True

    def __init__(self, precision: int = 38, scale: int = 9):
        super().__init__(precision=precision, scale=scale, asdecimal=True)
        self.precision = precision
        self.scale = scale

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            # sign and decimal point on top of the digits
            return dialect.type_descriptor(String(self.precision + 2))
        return dialect.type_descriptor(Numeric(self.precision, self.scale, asdecimal=True))

    def _quantize(self, value: Decimal) -> Decimal:
        with localcontext() as ctx:
            ctx.prec = self.precision
            return value.quantize(Decimal(1).scaleb(-self.scale), rounding=ROUND_HALF_UP)

    def _canonical_text(self, value: Decimal) -> str:
        if value == 0:
            return "0"
        with localcontext() as ctx:
            ctx.prec = self.precision
            return format(value.normalize(), "f")

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, float):
            raise TypeError(f"Float not allowed in a decimal column: {value!r}")
        if not isinstance(value, Decimal):
            value = Decimal(value)
        value = self._quantize(value)
        if dialect.name == "sqlite":
            return self._canonical_text(value)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return self._quantize(Decimal(value))


# Costs and quantities: 38 digits total, 9 decimal places
Amount = Annotated[Decimal, ExactDecimal(38, 9)]

# Exchange rates: 18 decimal places
Rate = Annotated[Decimal, ExactDecimal(38, 18)]

# ISO 4217 currency code
Currency = Annotated[str, String(3)]

# Product / variant identifiers supplied by the product registry
ItemIdentifier = Annotated[str, String(100)]

COST_DECIMAL_PLACES = 9
RATE_DECIMAL_PLACES = 18
DEFAULT_ROUNDING = ROUND_HALF_UP


def round_amount(
    value: Decimal,
    decimal_places: int = COST_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a cost, quantity or price to the given number of decimal places.

    Postconditions: Returns value quantized with the given rounding mode.
    """
    quantize_str = "1" if decimal_places == 0 else "0." + "0" * decimal_places
    return value.quantize(Decimal(quantize_str), rounding=rounding)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime column.

    Contract:
        Accepts aware datetimes only; stores them normalised to UTC.
    Guarantees:
        - process_result_value always returns an aware UTC datetime.
    Raises:
        ValueError: on bind of a naive datetime.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value!r}")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utc(value: datetime) -> datetime:
    """Normalise an aware datetime to UTC; naive values are assumed to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
