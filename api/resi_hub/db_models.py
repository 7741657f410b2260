# resi_hub/db_models.py
"""
SQLAlchemy ORM Models for Resi Hub.

Every table carries a ``store`` partition column; the product alias
dictionary (with its part substitutions) and the reseller master list are
shared across stores.
"""
from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional
import enum
import uuid

from sqlalchemy import (
    String, Integer, BigInteger, Boolean, Text, DateTime,
    Numeric, ForeignKey, Index, CheckConstraint, UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from resi_hub.database import Base

# BIGINT primary keys do not alias ROWID on SQLite
BigIntPK = BigInteger().with_variant(Integer, "sqlite")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_receipt_id() -> str:
    return str(uuid.uuid4())


# ============================================================================
# ENUMS
# ============================================================================

class Platform(str, enum.Enum):
    SHOPEE = "SHOPEE"
    TIKTOK = "TIKTOK"
    KILAT = "KILAT"
    RESELLER = "RESELLER"
    EXPORT = "EXPORT"


class ReceiptStage(str, enum.Enum):
    UNSCANNED = "UNSCANNED"
    STAGE1_SCANNED = "STAGE1_SCANNED"
    STAGE2_VERIFIED = "STAGE2_VERIFIED"
    STAGE3_PROCESSED = "STAGE3_PROCESSED"


STAGE_ORDER = {
    ReceiptStage.UNSCANNED: 0,
    ReceiptStage.STAGE1_SCANNED: 1,
    ReceiptStage.STAGE2_VERIFIED: 2,
    ReceiptStage.STAGE3_PROCESSED: 3,
}


# ============================================================================
# MIXIN for created_at / updated_at
# ============================================================================

class TimestampMixin:
    """Mixin for created_at and updated_at columns."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )


# ============================================================================
# 1. RECEIPT SCANS (resi)
# ============================================================================

class ReceiptScan(TimestampMixin, Base):
    __tablename__ = "receipt_scans"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_receipt_id)
    store: Mapped[str] = mapped_column(String(20), nullable=False)
    code: Mapped[str] = mapped_column(String(100), nullable=False)
    platform: Mapped[Platform] = mapped_column(SQLEnum(Platform, name="platform"), nullable=False)
    # NOT NULL so the unique constraint also covers "no sub-channel"
    sub_channel: Mapped[str] = mapped_column(String(100), default="", nullable=False)

    stage1_scanned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    scanned_by: Mapped[Optional[str]] = mapped_column(String(100))
    stage2_verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    verified_by: Mapped[Optional[str]] = mapped_column(String(100))
    stage3_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    customer: Mapped[Optional[str]] = mapped_column(String(255))
    order_id: Mapped[Optional[str]] = mapped_column(String(100))

    __table_args__ = (
        UniqueConstraint("store", "code", "platform", "sub_channel", name="uq_receipt_scans_scope"),
        CheckConstraint(
            "(stage2_verified_at IS NULL OR stage1_scanned_at IS NOT NULL) "
            "AND (stage3_completed_at IS NULL OR stage2_verified_at IS NOT NULL)",
            name="chk_receipt_stage_order",
        ),
        Index("idx_receipt_scans_store_code", "store", "code"),
        Index("idx_receipt_scans_scanned", "store", "stage1_scanned_at"),
    )

    @property
    def stage(self) -> ReceiptStage:
        # first match wins, latest stage first
        if self.stage3_completed_at is not None:
            return ReceiptStage.STAGE3_PROCESSED
        if self.stage2_verified_at is not None:
            return ReceiptStage.STAGE2_VERIFIED
        if self.stage1_scanned_at is not None:
            return ReceiptStage.STAGE1_SCANNED
        return ReceiptStage.UNSCANNED


# ============================================================================
# 2. RECEIPT LINE ITEMS
# ============================================================================

class ReceiptItem(Base):
    __tablename__ = "receipt_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    receipt_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("receipt_scans.id", ondelete="CASCADE"), nullable=False
    )
    store: Mapped[str] = mapped_column(String(20), nullable=False)
    part_number: Mapped[str] = mapped_column(String(100), nullable=False)
    product_name: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    brand: Mapped[Optional[str]] = mapped_column(String(100))
    application: Mapped[Optional[str]] = mapped_column(String(255))
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    unit_price: Mapped[float] = mapped_column(Numeric(16, 2, asdecimal=False), default=0, nullable=False)
    total_price: Mapped[float] = mapped_column(Numeric(16, 2, asdecimal=False), default=0, nullable=False)
    sku_from_csv: Mapped[Optional[str]] = mapped_column(String(100))
    is_split_item: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    split_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    manual_input: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_receipt_items_receipt", "receipt_id"),
    )


# ============================================================================
# 3. SOLD ITEMS (barang keluar ledger)
# ============================================================================

class SoldItem(Base):
    __tablename__ = "sold_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    store: Mapped[str] = mapped_column(String(20), nullable=False)
    sold_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    platform: Mapped[Platform] = mapped_column(SQLEnum(Platform, name="platform"), nullable=False)
    sub_channel: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    customer: Mapped[Optional[str]] = mapped_column(String(255))
    part_number: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    brand: Mapped[Optional[str]] = mapped_column(String(100))
    application: Mapped[Optional[str]] = mapped_column(String(255))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[float] = mapped_column(Numeric(16, 2, asdecimal=False), default=0, nullable=False)
    total_price: Mapped[float] = mapped_column(Numeric(16, 2, asdecimal=False), default=0, nullable=False)
    resi: Mapped[str] = mapped_column(String(100), default="-", nullable=False)
    stock_after: Mapped[int] = mapped_column(Integer, nullable=False)
    created_by: Mapped[str] = mapped_column(String(100), default="system", nullable=False)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="chk_sold_items_qty"),
        Index("idx_sold_items_store_date", "store", "sold_at"),
        Index("idx_sold_items_resi", "store", "resi"),
    )


# ============================================================================
# 4. STOCK (part master per store)
# ============================================================================

class StockItem(TimestampMixin, Base):
    __tablename__ = "stock_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    store: Mapped[str] = mapped_column(String(20), nullable=False)
    part_number: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    brand: Mapped[Optional[str]] = mapped_column(String(100))
    application: Mapped[Optional[str]] = mapped_column(String(255))
    quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("store", "part_number", name="uq_stock_items"),
    )


# ============================================================================
# 5. PRODUCT ALIASES AND PART SUBSTITUTIONS
# ============================================================================

class ProductAlias(Base):
    __tablename__ = "product_aliases"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    part_number: Mapped[str] = mapped_column(String(100), nullable=False)
    alias_name: Mapped[str] = mapped_column(String(500), nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("part_number", "alias_name", "source", name="uq_product_aliases"),
        Index("idx_product_aliases_name", "alias_name"),
    )


class PartSubstitution(Base):
    """Substitute part number (as printed on listings) -> main part number in stock."""
    __tablename__ = "part_substitutions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    main_part_number: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    substitute_part_number: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


# ============================================================================
# 6. RESELLERS
# ============================================================================

class Reseller(Base):
    __tablename__ = "resellers"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


# ============================================================================
# 7. KILAT (instant) SHIPMENTS
# ============================================================================

class KilatShipment(Base):
    __tablename__ = "kilat_shipments"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    store: Mapped[str] = mapped_column(String(20), nullable=False)
    code: Mapped[str] = mapped_column(String(100), nullable=False)
    sub_channel: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    part_number: Mapped[str] = mapped_column(String(100), nullable=False)
    product_name: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    customer: Mapped[Optional[str]] = mapped_column(String(255))
    is_sold: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    stock_after: Mapped[Optional[int]] = mapped_column(Integer)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    scanned_by: Mapped[Optional[str]] = mapped_column(String(100))
    scanned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("store", "code", "part_number", name="uq_kilat_shipments"),
        Index("idx_kilat_shipments_store", "store", "is_sold"),
    )
