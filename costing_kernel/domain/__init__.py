"""Pure domain values shared by engines and services."""

from costing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from costing_kernel.domain.values import (
    ISO_4217_CURRENCIES,
    ExchangeRate,
    ItemKey,
    to_decimal,
    validate_currency,
)

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "ItemKey",
    "ExchangeRate",
    "ISO_4217_CURRENCIES",
    "to_decimal",
    "validate_currency",
]
