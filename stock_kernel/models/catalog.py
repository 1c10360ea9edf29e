"""
Module: stock_kernel.models.catalog
Responsibility: Minimal catalog tables the ledger validates against: stores
    (with their stock policy flags), suppliers, products, variants, packs
    and barcodes.
Architecture position: Kernel > Models.  May import from db/base.py only.

Catalog CRUD is owned by the surrounding application.  The kernel reads these
rows through the collaborator seams in ``stock_kernel.domain.collaborators``
and never edits them, except for the snapshot seeding done when a product is
created (see SnapshotProjector.ensure_snapshots_for_product).
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base


class Store(Base):
    """
    A store belonging to one organization.

    Guarantees:
        - allow_negative_stock governs the negative-stock gate on every
          movement in this store.
        - track_expiry_lots enables the lot tracker for this store.
    """

    __tablename__ = "stores"

    __table_args__ = (Index("idx_store_org", "organization_id"),)

    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    allow_negative_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    track_expiry_lots: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<Store {self.name}>"


class Supplier(Base):
    __tablename__ = "suppliers"

    __table_args__ = (Index("idx_supplier_org", "organization_id"),)

    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)


class Product(Base):
    """A product; ``supplier_id`` is the default supplier used for reorder drafts."""

    __tablename__ = "products"

    __table_args__ = (Index("idx_product_org", "organization_id"),)

    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    supplier_id: Mapped[UUID | None] = mapped_column(ForeignKey("suppliers.id"), nullable=True)
    base_unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class ProductVariant(Base):
    __tablename__ = "product_variants"

    __table_args__ = (Index("idx_variant_product", "product_id"),)

    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class ProductPack(Base):
    """A purchasable pack; ``multiplier`` base units per pack."""

    __tablename__ = "product_packs"

    __table_args__ = (Index("idx_pack_product", "product_id"),)

    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    multiplier: Mapped[int] = mapped_column(Integer, nullable=False)


class ProductBarcode(Base):
    """A scannable code for a product; unique within an organization."""

    __tablename__ = "product_barcodes"

    __table_args__ = (
        UniqueConstraint("organization_id", "value", name="uq_barcode_org_value"),
    )

    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    value: Mapped[str] = mapped_column(String(100), nullable=False)
