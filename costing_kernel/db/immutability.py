"""
Mapper-event guards that keep inventory layers and audit rows immutable.

SQLAlchemy fires ``before_insert`` / ``before_update`` / ``before_delete``
for every row in a flush before its SQL is sent.  The listeners here check
the row and raise ImmutabilityViolationError, which aborts the flush; the
caller's transaction is left for it to roll back.

Entity                       | Rule
-----------------------------|------------------------------------------------
InventoryLayerModel          | quantity_received, unit_cost, received_at,
                             | created_at, layer_sequence, source_type and
                             | source_reference never change after insert.
                             | quantity_remaining only decreases and stays in
                             | [0, quantity_received].  product_id / variant_id
                             | may change (item merge).  A layer still holding
                             | stock cannot be deleted.
StockCounterAdjustmentModel  | append-only
LandedCostAllocationModel    | append-only
LandedCostChargeModel        | append-only

The quantity bounds repeat the table's CHECK constraints.  SQLite stores
these decimals as text and cannot compare two of them in a CHECK, so on
SQLite the listener is the only enforcement.

Bulk ``UPDATE`` / ``DELETE`` statements do not fire mapper events and are
not covered.

Usage::

    register_immutability_listeners()   # done by init_engine_from_url()
"""

from sqlalchemy import event, inspect

from costing_kernel.exceptions import ImmutabilityViolationError
from costing_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

FROZEN_LAYER_FIELDS = (
    "quantity_received",
    "unit_cost",
    "received_at",
    "created_at",
    "layer_sequence",
    "source_type",
    "source_reference",
)

_NOT_LOADED = object()


def _block(entity_type: str, target, operation: str, reason: str, **fields) -> None:
    entity_id = str(target.id)
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            **fields,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _change(target, key: str):
    """
    ``(old, new)`` if ``key`` was given a different value since load, else None.

    Setting an attribute to an equal value (``Decimal("5")`` over
    ``Decimal("5.000000000")``) is not a change.  When the old value was
    never loaded, ``old`` is ``_NOT_LOADED``.
    """
    history = inspect(target).attrs[key].history
    if not history.added:
        return None
    new = history.added[0]
    if not history.deleted:
        return _NOT_LOADED, new
    old = history.deleted[0]
    if old == new:
        return None
    return old, new


# =============================================================================
# Inventory layers
# =============================================================================

def _check_layer_quantities(target, operation: str) -> None:
    if target.quantity_received <= 0:
        _block("InventoryLayer", target, operation, "quantity_received must be positive")
    if target.unit_cost < 0:
        _block("InventoryLayer", target, operation, "unit_cost cannot be negative")
    if not 0 <= target.quantity_remaining <= target.quantity_received:
        _block(
            "InventoryLayer",
            target,
            operation,
            "quantity_remaining must lie between 0 and quantity_received",
            quantity_remaining=str(target.quantity_remaining),
            quantity_received=str(target.quantity_received),
        )


def _check_inventory_layer_insert(mapper, connection, target):
    _check_layer_quantities(target, "INSERT")


def _check_inventory_layer_immutability(mapper, connection, target):
    """
    Only quantity_remaining (downwards) and the owning item may change.
    """
    for key in FROZEN_LAYER_FIELDS:
        if _change(target, key) is not None:
            _block(
                "InventoryLayer",
                target,
                "UPDATE",
                f"Cannot modify field '{key}' of an inventory layer",
                field=key,
            )

    remaining = _change(target, "quantity_remaining")
    if remaining is not None:
        old, new = remaining
        if old is not _NOT_LOADED and new > old:
            _block(
                "InventoryLayer",
                target,
                "UPDATE",
                "quantity_remaining of an inventory layer cannot increase",
                field="quantity_remaining",
                old_value=str(old),
                new_value=str(new),
            )

    _check_layer_quantities(target, "UPDATE")


def _check_inventory_layer_delete(mapper, connection, target):
    if target.quantity_remaining > 0:
        _block(
            "InventoryLayer",
            target,
            "DELETE",
            "Cannot delete an inventory layer that still holds stock",
            quantity_remaining=str(target.quantity_remaining),
        )


# =============================================================================
# Append-only audit rows
# =============================================================================

def _check_append_only_update(mapper, connection, target):
    for attr in mapper.column_attrs:
        if _change(target, attr.key) is not None:
            _block(
                type(target).__name__,
                target,
                "UPDATE",
                f"{type(target).__name__} rows are append-only",
                field=attr.key,
            )


def _check_append_only_delete(mapper, connection, target):
    _block(
        type(target).__name__,
        target,
        "DELETE",
        f"{type(target).__name__} rows cannot be deleted",
    )


def _listeners():
    from costing_kernel.models.inventory_layer import InventoryLayerModel
    from costing_kernel.models.landed_cost import (
        LandedCostAllocationModel,
        LandedCostChargeModel,
    )
    from costing_kernel.models.stock_adjustment import StockCounterAdjustmentModel

    listeners = [
        (InventoryLayerModel, "before_insert", _check_inventory_layer_insert),
        (InventoryLayerModel, "before_update", _check_inventory_layer_immutability),
        (InventoryLayerModel, "before_delete", _check_inventory_layer_delete),
    ]
    for model in (
        StockCounterAdjustmentModel,
        LandedCostAllocationModel,
        LandedCostChargeModel,
    ):
        listeners.append((model, "before_update", _check_append_only_update))
        listeners.append((model, "before_delete", _check_append_only_delete))
    return listeners


def register_immutability_listeners() -> None:
    """Register every guard.  Registering twice is a no-op."""
    for target, name, fn in _listeners():
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def unregister_immutability_listeners() -> None:
    """Remove every guard (tests that need to write a forbidden row)."""
    for target, name, fn in _listeners():
        if event.contains(target, name, fn):
            event.remove(target, name, fn)
