"""
Module: costing_kernel.models.inventory_layer
Responsibility: ORM persistence for inventory cost layers.  Each layer is one
    receipt of stock at a fixed home-currency unit cost, consumed oldest-first.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - quantity_received > 0 and unit_cost >= 0 at creation (service layer,
      CHECK constraints, db.immutability insert listener).
    - quantity_received, unit_cost, received_at and provenance never change
      after creation (db.immutability update listener).
    - 0 <= quantity_remaining <= quantity_received, non-increasing.  The
      cross-column CHECK is emitted on PostgreSQL only; SQLite stores decimals
      as text, where the listener is the enforcement point.
    - layer_sequence is allocated from one database-wide counter, so it is
      unique across items and survives ownership transfer.  FIFO order is
      (received_at, layer_sequence).

Audit relevance:
    A layer that still holds stock cannot be deleted.  Depleted rows stay as
    cost history, and source_type / source_reference trace each layer to the
    purchase or production event that created it.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, CheckConstraint, Index, Sequence, String
from sqlalchemy.orm import Mapped, mapped_column

from costing_kernel.db.base import Base
from costing_kernel.db.types import ExactDecimal, UTCDateTime

# Database-wide insertion order for layers.  Created with the schema on
# PostgreSQL; SQLite has no sequences (see InventoryLayerLedger).
LAYER_SEQUENCE = Sequence("inventory_layer_sequence", metadata=Base.metadata)


class LayerSourceType:
    """Origins of an inventory layer."""

    PURCHASE = "purchase"
    PRODUCTION = "production"
    OPENING = "opening"
    ADJUSTMENT = "adjustment"

    ALL = frozenset({PURCHASE, PRODUCTION, OPENING, ADJUSTMENT})


class InventoryLayerModel(Base):
    """
    Persistent storage for inventory cost layers.

    Contract:
        Rows are created only by InventoryLayerLedger.append_layer.  Only
        quantity_remaining (consumption) and product_id / variant_id
        (ownership transfer during a merge) are ever updated.

    Non-goals:
        - Does not hold the running weighted-average cost; that lives on
          ItemCostStateModel so it stays independent of layer detail.
    """

    __tablename__ = "inventory_layers"

    __table_args__ = (
        CheckConstraint("quantity_received > 0", name="ck_layer_received_positive"),
        CheckConstraint("quantity_remaining >= 0", name="ck_layer_remaining_non_negative"),
        CheckConstraint(
            "quantity_remaining <= quantity_received",
            name="ck_layer_remaining_within_received",
        ).ddl_if(dialect="postgresql"),
        CheckConstraint("unit_cost >= 0", name="ck_layer_cost_non_negative"),
        # Query: remaining layers for an item in FIFO order
        Index("idx_layer_item_received", "product_id", "variant_id", "received_at"),
        # Query: layers by provenance
        Index("idx_layer_source", "source_type", "source_reference"),
    )

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    variant_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Immutable after creation
    quantity_received: Mapped[Decimal] = mapped_column(ExactDecimal(38, 9), nullable=False)

    quantity_remaining: Mapped[Decimal] = mapped_column(ExactDecimal(38, 9), nullable=False)

    # Immutable after creation, home currency
    unit_cost: Mapped[Decimal] = mapped_column(ExactDecimal(38, 9), nullable=False)

    received_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    # Insertion order across all items, allocated by the ledger
    layer_sequence: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    source_type: Mapped[str] = mapped_column(String(20), nullable=False)

    source_reference: Mapped[str | None] = mapped_column(String(200), nullable=True)

    @property
    def is_depleted(self) -> bool:
        return self.quantity_remaining <= 0

    def __repr__(self) -> str:
        item = self.product_id if self.variant_id is None else f"{self.product_id}/{self.variant_id}"
        return (
            f"<InventoryLayer {self.id}: item={item} "
            f"remaining={self.quantity_remaining}/{self.quantity_received} @ {self.unit_cost}>"
        )
