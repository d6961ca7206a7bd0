"""
Module: costing_kernel.models.landed_cost
Responsibility: Audit record of each landed-cost allocation run and of the
    shipment charges it distributed.  Charges are ephemeral inputs; these rows
    are a record only and are never re-consumed by the allocator.
Architecture position: Kernel > Models.  May import from db/ only.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from costing_kernel.db.base import Base, UUIDString
from costing_kernel.db.types import ExactDecimal, UTCDateTime


class LandedCostAllocationModel(Base):
    """
    Header row for one allocation batch (one supplier shipment).

    Guarantees:
        - Written in the same savepoint as the batch's layers; exists iff
          every layer of the batch was appended.
        - charges_distributed is False when charges were present but the
          shipment had zero recorded weight.
    """

    __tablename__ = "landed_cost_allocations"

    __table_args__ = (
        Index("idx_allocation_allocated_at", "allocated_at"),
        Index("idx_allocation_source", "source_reference"),
    )

    allocated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    source_reference: Mapped[str | None] = mapped_column(String(200), nullable=True)

    home_currency: Mapped[str] = mapped_column(String(3), nullable=False)

    foreign_currency: Mapped[str] = mapped_column(String(3), nullable=False)

    exchange_rate: Mapped[Decimal] = mapped_column(ExactDecimal(38, 18), nullable=False)

    wholesale_margin_pct: Mapped[Decimal] = mapped_column(ExactDecimal(38, 9), nullable=False)

    retail_margin_pct: Mapped[Decimal] = mapped_column(ExactDecimal(38, 9), nullable=False)

    total_charges: Mapped[Decimal] = mapped_column(ExactDecimal(38, 9), nullable=False)

    total_weight: Mapped[Decimal] = mapped_column(ExactDecimal(38, 9), nullable=False)

    charges_distributed: Mapped[bool] = mapped_column(Boolean, nullable=False)

    line_count: Mapped[int] = mapped_column(Integer, nullable=False)

    total_landed_cost: Mapped[Decimal] = mapped_column(ExactDecimal(38, 9), nullable=False)

    charges: Mapped[list["LandedCostChargeModel"]] = relationship(
        back_populates="allocation",
        order_by="LandedCostChargeModel.position",
    )

    def __repr__(self) -> str:
        return (
            f"<LandedCostAllocation {self.id}: lines={self.line_count} "
            f"charges={self.total_charges} {self.home_currency}>"
        )


class LandedCostChargeModel(Base):
    """One shipment-level charge as entered, with its home-currency amount."""

    __tablename__ = "landed_cost_charges"

    allocation_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("landed_cost_allocations.id"),
        nullable=False,
        index=True,
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False)

    charge_type: Mapped[str] = mapped_column(String(20), nullable=False)

    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    amount: Mapped[Decimal] = mapped_column(ExactDecimal(38, 9), nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    home_amount: Mapped[Decimal] = mapped_column(ExactDecimal(38, 9), nullable=False)

    allocation: Mapped[LandedCostAllocationModel] = relationship(back_populates="charges")
