"""
Module: costing_kernel.models.stock_adjustment
Responsibility: Audit trail of explicit stock-counter resynchronisations.
    Every time an operator corrects the product registry's cached stock
    counter to the ledger's layer sum, one row records before/after values,
    the actor and the reason.
Architecture position: Kernel > Models.  May import from db/ only.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from costing_kernel.db.base import Base, UUIDString
from costing_kernel.db.types import ExactDecimal, UTCDateTime


class StockCounterAdjustmentModel(Base):
    """Append-only record of one stock counter correction."""

    __tablename__ = "stock_counter_adjustments"

    __table_args__ = (
        Index("idx_stock_adjustment_item", "product_id", "variant_id"),
        Index("idx_stock_adjustment_at", "adjusted_at"),
    )

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    variant_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    cached_quantity: Mapped[Decimal] = mapped_column(ExactDecimal(38, 9), nullable=False)

    recomputed_quantity: Mapped[Decimal] = mapped_column(ExactDecimal(38, 9), nullable=False)

    drift: Mapped[Decimal] = mapped_column(ExactDecimal(38, 9), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    reason: Mapped[str] = mapped_column(String(500), nullable=False)

    adjusted_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<StockCounterAdjustment {self.product_id}/{self.variant_id or '-'}: "
            f"{self.cached_quantity} -> {self.recomputed_quantity}>"
        )
