"""
Module: stock_kernel.selectors.catalog_selector
Responsibility: ORM-backed default implementations of the collaborator seams
    (store policy, unit conversion, catalog validation, scan lookup).
Architecture position: Kernel > Selectors.

Invariants enforced:
    - A row that belongs to another organization is reported exactly like a
      missing row (NotFound), so cross-tenant existence never leaks.
    - Deleted products and inactive variants are NotFound.
"""

from uuid import UUID

from sqlalchemy import func, select

from stock_kernel.domain.collaborators import ProductRef, ScanMatch, StorePolicy
from stock_kernel.domain.values import BASE_VARIANT_KEY, variant_key_for
from stock_kernel.exceptions import (
    AmbiguousScanError,
    InvalidQuantityError,
    PackNotFoundError,
    ProductNotFoundError,
    ScanNotFoundError,
    ScanValueRequiredError,
    StoreNotFoundError,
    SupplierNotFoundError,
    VariantNotFoundError,
)
from stock_kernel.models.catalog import (
    Product,
    ProductBarcode,
    ProductPack,
    ProductVariant,
    Store,
    Supplier,
)
from stock_kernel.selectors.base import BaseSelector


class OrmStorePolicyReader(BaseSelector):
    """Reads allow_negative_stock / track_expiry_lots from the stores table."""

    def get_store(self, organization_id: UUID, store_id: UUID) -> StorePolicy:
        store = self.session.get(Store, store_id)
        if store is None or store.organization_id != organization_id:
            raise StoreNotFoundError(str(store_id))
        return StorePolicy(
            store_id=store.id,
            organization_id=store.organization_id,
            allow_negative_stock=bool(store.allow_negative_stock),
            track_expiry_lots=bool(store.track_expiry_lots),
        )

    def list_store_ids(self, organization_id: UUID) -> list[UUID]:
        return list(
            self.session.execute(
                select(Store.id)
                .where(Store.organization_id == organization_id)
                .order_by(Store.name)
            ).scalars()
        )


class OrmUnitResolver(BaseSelector):
    """Converts pack quantities with product_packs.multiplier."""

    def to_base_quantity(self, product_id: UUID, pack_id: UUID | None, qty: int) -> int:
        if pack_id is None:
            return qty
        pack = self.session.get(ProductPack, pack_id)
        if pack is None or pack.product_id != product_id:
            raise PackNotFoundError(str(pack_id))
        if pack.multiplier <= 0:
            raise InvalidQuantityError("pack.multiplier", pack.multiplier, "must be positive")
        return qty * pack.multiplier


class OrmCatalogReader(BaseSelector):
    """Validates product, variant and supplier references for one organization."""

    def get_product(self, organization_id: UUID, product_id: UUID) -> ProductRef:
        product = self.session.get(Product, product_id)
        if product is None or product.organization_id != organization_id or product.is_deleted:
            raise ProductNotFoundError(str(product_id))
        return ProductRef(
            product_id=product.id,
            organization_id=product.organization_id,
            supplier_id=product.supplier_id,
        )

    def resolve_variant_key(
        self, organization_id: UUID, product_id: UUID, variant_id: UUID | None
    ) -> str:
        if variant_id is None:
            return BASE_VARIANT_KEY
        variant = self.session.get(ProductVariant, variant_id)
        if variant is None or variant.product_id != product_id or not variant.is_active:
            raise VariantNotFoundError(str(variant_id))
        return variant_key_for(variant.id)

    def require_supplier(self, organization_id: UUID, supplier_id: UUID) -> UUID:
        supplier = self.session.get(Supplier, supplier_id)
        if supplier is None or supplier.organization_id != organization_id:
            raise SupplierNotFoundError(str(supplier_id))
        return supplier.id

    def default_suppliers(
        self, organization_id: UUID, product_ids: list[UUID]
    ) -> dict[UUID, UUID | None]:
        """Default supplier per product; unknown, foreign and deleted products are omitted."""
        if not product_ids:
            return {}
        rows = self.session.execute(
            select(Product.id, Product.supplier_id).where(
                Product.organization_id == organization_id,
                Product.id.in_(product_ids),
                Product.is_deleted.is_(False),
            )
        ).all()
        return {product_id: supplier_id for product_id, supplier_id in rows}

    def resolve_scan(self, organization_id: UUID, value: str) -> ScanMatch:
        """Barcode first, then product SKU, then active variant SKU (SKUs case-insensitive)."""
        scan_value = (value or "").strip()
        if not scan_value:
            raise ScanValueRequiredError()

        product_id = self.session.execute(
            select(ProductBarcode.product_id)
            .join(Product, Product.id == ProductBarcode.product_id)
            .where(
                ProductBarcode.organization_id == organization_id,
                ProductBarcode.value == scan_value,
                Product.is_deleted.is_(False),
            )
        ).scalars().first()
        if product_id is None:
            product_id = self.session.execute(
                select(Product.id).where(
                    Product.organization_id == organization_id,
                    Product.is_deleted.is_(False),
                    func.lower(Product.sku) == scan_value.lower(),
                )
            ).scalars().first()
        if product_id is not None:
            return ScanMatch(product_id=product_id, variant_id=None, scan_value=scan_value)

        variants = self.session.execute(
            select(ProductVariant.id, ProductVariant.product_id)
            .join(Product, Product.id == ProductVariant.product_id)
            .where(
                Product.organization_id == organization_id,
                Product.is_deleted.is_(False),
                ProductVariant.is_active.is_(True),
                func.lower(ProductVariant.sku) == scan_value.lower(),
            )
        ).all()
        if len(variants) > 1:
            raise AmbiguousScanError(scan_value, len(variants))
        if not variants:
            raise ScanNotFoundError(scan_value)
        variant_id, product_id = variants[0]
        return ScanMatch(product_id=product_id, variant_id=variant_id, scan_value=scan_value)
