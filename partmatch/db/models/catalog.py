"""Catalog ORM models: store items, supplier items and interchange entries.

Rows are written by ingestion; the matching core only reads them.
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy import Float, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from partmatch.db.base import Base, TimestampMixin


class CatalogColumnsMixin:
    """Columns shared by store and supplier rows."""
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    project_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    part_number: Mapped[str] = mapped_column(String(100), nullable=False)
    canonical_part_number: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        doc="Upper-cased, punctuation-stripped, leading-zero-trimmed join key",
    )
    line_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    mfr_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4), nullable=True)
    quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)


class StoreItemRow(Base, CatalogColumnsMixin, TimestampMixin):
    """Row of a project's store inventory."""

    __tablename__ = "store_items"
    __table_args__ = (
        Index("idx_store_items_project_canonical", "project_id", "canonical_part_number"),
    )

    def __repr__(self) -> str:
        return f"<StoreItemRow(id={self.id}, part_number='{self.part_number}')>"


class SupplierItemRow(Base, CatalogColumnsMixin, TimestampMixin):
    """Row of a project's supplier catalog."""

    __tablename__ = "supplier_items"
    __table_args__ = (
        Index("idx_supplier_items_project_canonical", "project_id", "canonical_part_number"),
        Index("idx_supplier_items_project_line_code", "project_id", "line_code"),
    )

    def __repr__(self) -> str:
        return f"<SupplierItemRow(id={self.id}, part_number='{self.part_number}')>"


class InterchangeEntryRow(Base, TimestampMixin):
    """Vendor cross-reference between two part numbers."""

    __tablename__ = "interchange_entries"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    project_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    ours: Mapped[str] = mapped_column(String(100), nullable=False)
    theirs: Mapped[str] = mapped_column(String(100), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, server_default="0.95")
    source: Mapped[str] = mapped_column(String(100), nullable=False, server_default="curated")

    def __repr__(self) -> str:
        return f"<InterchangeEntryRow(id={self.id}, ours='{self.ours}', theirs='{self.theirs}')>"
