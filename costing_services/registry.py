"""
ProductRegistry -- port to the product / variant catalogue.

Responsibility:
    The catalogue owns product and variant records: the mutable price
    fields (cost price, wholesale price, retail price), the store and
    category a product belongs to, and the cached aggregate stock counter.
    The costing services read and write those fields only through this
    port.

Architecture position:
    Services -- port interface plus an in-memory adapter.  The in-memory
    adapter backs the test-suite and local tooling; the application wires
    its own adapter over the catalogue tables.

Invariants enforced:
    - The cached stock counter is written only by explicit
      resynchronisation (StockReconciliationService.resynchronize) or by
      the caller after a ledger operation; the costing services never
      trust it.
    - Price proposals are applied by the caller, never by the allocator.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from costing_kernel.domain.values import ItemKey
from costing_kernel.logging_config import get_logger

logger = get_logger("services.registry")


@dataclass(frozen=True)
class PriceProposal:
    """
    New price fields suggested by a landed cost allocation.

    landed_cost_per_unit becomes the catalogue's cost price; prices are
    already rounded to the configured price precision.
    """

    item_key: ItemKey
    landed_cost_per_unit: Decimal
    wholesale_price: Decimal
    retail_price: Decimal
    currency: str
    allocation_id: UUID | None = None


class ProductRegistry(ABC):
    """Catalogue fields the costing services depend on."""

    @abstractmethod
    def cached_stock_quantity(self, key: ItemKey) -> Decimal:
        """Current value of the cached aggregate stock counter."""

    @abstractmethod
    def write_stock_quantity(self, key: ItemKey, quantity: Decimal) -> None:
        """Overwrite the cached aggregate stock counter."""

    @abstractmethod
    def apply_price_proposal(self, proposal: PriceProposal) -> None:
        """Write proposed cost / wholesale / retail prices to the catalogue."""

    @abstractmethod
    def list_product_ids(
        self,
        store_id: str | None = None,
        category_id: str | None = None,
    ) -> list[str]:
        """Product ids, optionally narrowed to a store and / or category."""


@dataclass
class ProductRecord:
    """One catalogue entry held by InMemoryProductRegistry."""

    key: ItemKey
    store_id: str | None = None
    category_id: str | None = None
    stock_quantity: Decimal = Decimal("0")
    cost_price: Decimal | None = None
    wholesale_price: Decimal | None = None
    retail_price: Decimal | None = None
    price_history: list[PriceProposal] = field(default_factory=list)


class InMemoryProductRegistry(ProductRegistry):
    """
    Dictionary-backed registry.

    Thread-safe so concurrent-terminal tests can share one instance.
    Unknown items read as zero stock and are created on first write.
    """

    def __init__(self) -> None:
        self._records: dict[ItemKey, ProductRecord] = {}
        self._lock = threading.Lock()

    def register(
        self,
        key: ItemKey,
        store_id: str | None = None,
        category_id: str | None = None,
        stock_quantity: Decimal = Decimal("0"),
    ) -> ProductRecord:
        with self._lock:
            record = ProductRecord(
                key=key,
                store_id=store_id,
                category_id=category_id,
                stock_quantity=stock_quantity,
            )
            self._records[key] = record
            return record

    def get(self, key: ItemKey) -> ProductRecord | None:
        with self._lock:
            return self._records.get(key)

    def _record(self, key: ItemKey) -> ProductRecord:
        record = self._records.get(key)
        if record is None:
            record = ProductRecord(key=key)
            self._records[key] = record
        return record

    def cached_stock_quantity(self, key: ItemKey) -> Decimal:
        with self._lock:
            record = self._records.get(key)
            return record.stock_quantity if record else Decimal("0")

    def write_stock_quantity(self, key: ItemKey, quantity: Decimal) -> None:
        with self._lock:
            record = self._record(key)
            previous = record.stock_quantity
            record.stock_quantity = quantity
        logger.info("registry_stock_written", extra={
            **key.as_dict(),
            "previous_quantity": str(previous),
            "quantity": str(quantity),
        })

    def apply_price_proposal(self, proposal: PriceProposal) -> None:
        with self._lock:
            record = self._record(proposal.item_key)
            record.cost_price = proposal.landed_cost_per_unit
            record.wholesale_price = proposal.wholesale_price
            record.retail_price = proposal.retail_price
            record.price_history.append(proposal)
        logger.info("registry_prices_applied", extra={
            **proposal.item_key.as_dict(),
            "cost_price": str(proposal.landed_cost_per_unit),
            "wholesale_price": str(proposal.wholesale_price),
            "retail_price": str(proposal.retail_price),
            "currency": proposal.currency,
        })

    def list_product_ids(
        self,
        store_id: str | None = None,
        category_id: str | None = None,
    ) -> list[str]:
        with self._lock:
            ids = {
                r.key.product_id
                for r in self._records.values()
                if (store_id is None or r.store_id == store_id)
                and (category_id is None or r.category_id == category_id)
            }
        return sorted(ids)
