"""
Typed exception hierarchy for the costing kernel.

Every error carries a machine-readable ``code`` class attribute and the
structured data needed to act on it, so callers catch by type and never
parse messages:

    try:
        ledger.consume_fifo(key, Decimal("5"))
    except InsufficientStockError as e:
        # block the sale, or record an approved negative-stock exception
        api_response(code=e.code, available=e.available)

Hierarchy:

    CostingError (base)
    |
    +-- InventoryError
    |   +-- InvalidQuantityError
    |   +-- InsufficientStockError
    |   +-- LayerNotFoundError
    |
    +-- AllocationError
    |   +-- InvalidReceiptLineError
    |   +-- InvalidChargeError
    |   +-- InvalidExchangeRateError
    |
    +-- CurrencyError
    |   +-- InvalidCurrencyError
    |
    +-- ReconciliationError
    |   +-- StockDriftError
    |
    +-- ImmutabilityViolationError

Codes:

    INVALID_QUANTITY       non-positive quantity or negative unit cost
    INSUFFICIENT_STOCK     FIFO request larger than the remaining layers
    LAYER_NOT_FOUND        unknown inventory layer id
    INVALID_RECEIPT_LINE   zero cartons/pieces, negative weight/price, empty batch
    INVALID_CHARGE         negative charge amount or unknown charge type
    INVALID_EXCHANGE_RATE  zero or negative rate
    INVALID_CURRENCY       not an ISO 4217 code
    STOCK_DRIFT            cached stock counter disagrees with the layer sum
    IMMUTABILITY_VIOLATION update of a frozen layer field or audit row, or
                           deletion of a layer that still holds stock

StockDriftError is recoverable: drift is expected after merges and
out-of-band edits.  It is surfaced to an operator and corrected only by an
explicit, audited resynchronisation.
"""

from decimal import Decimal


class CostingError(Exception):
    """Base exception for all costing kernel errors."""

    code: str = "COSTING_ERROR"


# Inventory ledger errors


class InventoryError(CostingError):
    """Base exception for inventory layer ledger errors."""

    code: str = "INVENTORY_ERROR"


class InvalidQuantityError(InventoryError):
    """Quantity must be positive and unit cost non-negative."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, field: str, value: Decimal, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field} {value}: {reason}")


class InsufficientStockError(InventoryError):
    """FIFO consumption requested more than the remaining layers hold."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_id: str,
        variant_id: str | None,
        requested: Decimal,
        available: Decimal,
    ):
        self.product_id = product_id
        self.variant_id = variant_id
        self.requested = requested
        self.available = available
        item = product_id if variant_id is None else f"{product_id}/{variant_id}"
        super().__init__(
            f"Insufficient stock for {item}: requested {requested}, "
            f"available {available}"
        )


class LayerNotFoundError(InventoryError):
    """Inventory layer with the given id does not exist."""

    code: str = "LAYER_NOT_FOUND"

    def __init__(self, layer_id: str):
        self.layer_id = layer_id
        super().__init__(f"Inventory layer not found: {layer_id}")


# Landed cost allocation errors


class AllocationError(CostingError):
    """Base exception for landed cost allocation errors."""

    code: str = "ALLOCATION_ERROR"


class InvalidReceiptLineError(AllocationError):
    """A purchase receipt line cannot be allocated; the whole batch is rejected."""

    code: str = "INVALID_RECEIPT_LINE"

    def __init__(self, line_index: int | None, reason: str):
        self.line_index = line_index
        self.reason = reason
        if line_index is None:
            super().__init__(f"Invalid receipt batch: {reason}")
        else:
            super().__init__(f"Invalid receipt line {line_index}: {reason}")


class InvalidChargeError(AllocationError):
    """A shipment charge is malformed."""

    code: str = "INVALID_CHARGE"

    def __init__(self, charge_index: int, reason: str):
        self.charge_index = charge_index
        self.reason = reason
        super().__init__(f"Invalid charge {charge_index}: {reason}")


class InvalidExchangeRateError(AllocationError):
    """Exchange rate must be strictly positive."""

    code: str = "INVALID_EXCHANGE_RATE"

    def __init__(self, rate: Decimal, reason: str = "rate must be positive"):
        self.rate = rate
        self.reason = reason
        super().__init__(f"Invalid exchange rate {rate}: {reason}")


# Currency errors


class CurrencyError(CostingError):
    """Base exception for currency errors."""

    code: str = "CURRENCY_ERROR"


class InvalidCurrencyError(CurrencyError):
    """Currency code is not a valid ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: '{currency}'")


# Reconciliation errors


class ReconciliationError(CostingError):
    """Base exception for stock reconciliation errors."""

    code: str = "RECONCILIATION_ERROR"


class StockDriftError(ReconciliationError):
    """Cached aggregate stock counter disagrees with the sum of remaining layers."""

    code: str = "STOCK_DRIFT"

    def __init__(
        self,
        product_id: str,
        variant_id: str | None,
        cached_quantity: Decimal,
        actual_quantity: Decimal,
    ):
        self.product_id = product_id
        self.variant_id = variant_id
        self.cached_quantity = cached_quantity
        self.actual_quantity = actual_quantity
        self.drift = cached_quantity - actual_quantity
        item = product_id if variant_id is None else f"{product_id}/{variant_id}"
        super().__init__(
            f"Stock drift on {item}: cached {cached_quantity}, "
            f"layers hold {actual_quantity} (drift {self.drift})"
        )


# Persistence guards


class ImmutabilityViolationError(CostingError):
    """A flush tried to change a frozen column or delete a protected row."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Immutability violation on {entity_type} {entity_id}: {reason}")
