"""
Module: costing_kernel.models.item_cost_state
Responsibility: One row per costed item holding the running weighted-average
    cost and lifetime received quantity.  The row doubles as the per-item
    lock target: SELECT ... FOR UPDATE on it serializes consumption, receipt
    and ownership transfer for that item only.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - (product_id, variant_key) is unique.  variant_key is '' for products
      without variants so the constraint also covers them.
    - running_average_cost changes only on receipt and on merge, never on
      consumption.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from costing_kernel.db.base import Base
from costing_kernel.db.types import ExactDecimal, UTCDateTime


class ItemCostStateModel(Base):
    """
    Running cost statistics and lock row for a (product, variant).

    Guarantees:
        - running_average_cost is rounded to cost precision.
        - version increments on every mutation.
    """

    __tablename__ = "item_cost_states"

    __table_args__ = (
        UniqueConstraint("product_id", "variant_key", name="uq_item_cost_state_item"),
        Index("idx_item_cost_state_product", "product_id"),
    )

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    variant_key: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    running_average_cost: Mapped[Decimal] = mapped_column(
        ExactDecimal(38, 9), nullable=False, default=Decimal("0")
    )

    # Lifetime quantity received; moves to the surviving item on merge
    total_received_quantity: Mapped[Decimal] = mapped_column(
        ExactDecimal(38, 9), nullable=False, default=Decimal("0")
    )

    version: Mapped[int] = mapped_column(nullable=False, default=0)

    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    @property
    def variant_id(self) -> str | None:
        return self.variant_key or None

    def __repr__(self) -> str:
        return (
            f"<ItemCostState {self.product_id}/{self.variant_key or '-'}: "
            f"avg={self.running_average_cost} v{self.version}>"
        )
