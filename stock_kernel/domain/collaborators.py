"""
Collaborator seams.

The ledger depends on things it does not own: the store stock policy,
pack-to-base unit conversion, catalog validation and, for stock counts,
resolving a scanned barcode or SKU.  They are expressed as
Protocols so services can be handed any implementation; the ORM-backed
defaults live in ``stock_kernel.selectors.catalog_selector``.
"""

from dataclasses import dataclass
from typing import Protocol
from uuid import UUID


@dataclass(frozen=True)
class StorePolicy:
    store_id: UUID
    organization_id: UUID
    allow_negative_stock: bool
    track_expiry_lots: bool


@dataclass(frozen=True)
class ProductRef:
    product_id: UUID
    organization_id: UUID
    supplier_id: UUID | None


@dataclass(frozen=True)
class ScanMatch:
    product_id: UUID
    variant_id: UUID | None
    scan_value: str


class StorePolicyReader(Protocol):
    def get_store(self, organization_id: UUID, store_id: UUID) -> StorePolicy:
        """Return the store policy; raise StoreNotFoundError for unknown or foreign stores."""
        ...

    def list_store_ids(self, organization_id: UUID) -> list[UUID]:
        ...


class UnitResolver(Protocol):
    def to_base_quantity(self, product_id: UUID, pack_id: UUID | None, qty: int) -> int:
        """Convert a pack quantity to base units; identity when pack_id is None."""
        ...


class CatalogReader(Protocol):
    def get_product(self, organization_id: UUID, product_id: UUID) -> ProductRef:
        ...

    def resolve_variant_key(
        self, organization_id: UUID, product_id: UUID, variant_id: UUID | None
    ) -> str:
        ...

    def require_supplier(self, organization_id: UUID, supplier_id: UUID) -> UUID:
        ...

    def default_suppliers(
        self, organization_id: UUID, product_ids: list[UUID]
    ) -> dict[UUID, UUID | None]:
        ...


class ScanResolver(Protocol):
    def resolve_scan(self, organization_id: UUID, value: str) -> ScanMatch:
        """
        Match a barcode, then a product SKU, then a variant SKU.

        Raises ScanValueRequiredError, AmbiguousScanError or ScanNotFoundError.
        """
        ...
