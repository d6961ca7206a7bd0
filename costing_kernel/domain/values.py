"""
Values -- Immutable, self-validating domain value objects.

Responsibility:
    Provides the value types shared by every costing component: the costed
    item identity (ItemKey), the explicit per-run exchange rate
    (ExchangeRate) and ISO 4217 currency validation.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - ItemKey.product_id is non-empty; an empty variant_id is normalised to
      None (absence of variant means the product has no variants).
    - ExchangeRate.rate > 0 and both currency codes are valid ISO 4217.

Failure modes:
    - ValueError on an empty product id.
    - InvalidExchangeRateError on a zero or negative rate.
    - InvalidCurrencyError on an unknown currency code.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from costing_kernel.exceptions import InvalidCurrencyError, InvalidExchangeRateError

# ISO 4217 codes the stores trade in.  FCFA (the franc the stores price
# in) is XAF / XOF.
ISO_4217_CURRENCIES: frozenset[str] = frozenset({
    "USD", "EUR", "GBP", "JPY", "CHF", "CAD", "AUD", "NZD", "CNY", "HKD",
    "INR", "AED", "SAR", "TRY", "ZAR", "NGN", "GHS", "KES", "MAD", "EGP",
    "XAF", "XOF", "BRL", "MXN", "SGD", "THB", "IDR", "MYR", "PKR", "BDT",
})


def validate_currency(currency: str) -> str:
    """
    Validate and normalise an ISO 4217 currency code.

    Postconditions: Returns the uppercase, trimmed code.

    Raises:
        InvalidCurrencyError: If the code is not recognised.
    """
    normalized = currency.upper().strip() if currency else ""
    if normalized not in ISO_4217_CURRENCIES:
        raise InvalidCurrencyError(currency)
    return normalized


def to_decimal(value: Decimal | int | str, field: str = "value") -> Decimal:
    """
    Coerce an input number to Decimal, rejecting floats.

    Raises:
        TypeError: For float input (binary floats are never accepted).
        ValueError: For strings that are not numbers.
    """
    if isinstance(value, float):
        raise TypeError(f"{field} must be Decimal, int or str, not float")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{field} is not a number: {value!r}") from exc


@dataclass(frozen=True, slots=True)
class ItemKey:
    """
    Identity of a costed item: a product, optionally narrowed to a variant.

    Guarantees:
        - Immutable and hashable; usable as a dict key.
        - Orders deterministically (product_id, then variant_key), which the
          ledger relies on when it locks two items at once.
    """

    product_id: str
    variant_id: str | None = None

    def __post_init__(self) -> None:
        if not self.product_id:
            raise ValueError("product_id is required")
        if self.variant_id == "":
            object.__setattr__(self, "variant_id", None)

    @property
    def variant_key(self) -> str:
        """Variant id, or the empty string for products without variants."""
        return self.variant_id or ""

    @property
    def has_variant(self) -> bool:
        return self.variant_id is not None

    def sort_key(self) -> tuple[str, str]:
        return (self.product_id, self.variant_key)

    def as_dict(self) -> dict[str, Any]:
        return {"product_id": self.product_id, "variant_id": self.variant_id}

    def __str__(self) -> str:
        if self.variant_id is None:
            return self.product_id
        return f"{self.product_id}/{self.variant_id}"


@dataclass(frozen=True, slots=True)
class ExchangeRate:
    """
    Home-currency units per one unit of a foreign currency.

    Contract:
        Supplied explicitly per allocation run; never fetched.

    Guarantees:
        - rate > 0.
        - foreign_currency and home_currency are valid, uppercase ISO codes.
    """

    rate: Decimal
    foreign_currency: str
    home_currency: str

    def __post_init__(self) -> None:
        rate = to_decimal(self.rate, "rate")
        if rate <= 0:
            raise InvalidExchangeRateError(rate)
        object.__setattr__(self, "rate", rate)
        object.__setattr__(self, "foreign_currency", validate_currency(self.foreign_currency))
        object.__setattr__(self, "home_currency", validate_currency(self.home_currency))

    @classmethod
    def of(
        cls,
        rate: Decimal | int | str,
        foreign_currency: str,
        home_currency: str,
    ) -> ExchangeRate:
        return cls(
            rate=to_decimal(rate, "rate"),
            foreign_currency=foreign_currency,
            home_currency=home_currency,
        )

    def to_home(self, amount: Decimal, currency: str) -> Decimal:
        """Amount unchanged if already in home currency, else amount x rate."""
        if validate_currency(currency) == self.home_currency:
            return amount
        return amount * self.rate

    def __str__(self) -> str:
        return f"1 {self.foreign_currency} = {self.rate} {self.home_currency}"
