# resi_hub/services/reconcile.py
"""
Reconciliation Matcher.

Pairs scanner-originated receipts with marketplace export rows by tracking
code, then builds the Stage-3 working rows: export data joined with receipt
status, part resolution (SKU, part substitution, alias dictionary) and
stock levels.

Status precedence per row (first hit wins):
    Belum Scan S1  no stage-1 scan for the code in this store
    Pending S2     scanned but not yet verified
    Butuh Input    no part number resolved
    Stok Kurang    stock below the batch demand for the part
    Ready          eligible for commit
"""
from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from resi_hub.adapters.marketplace_csv import ExportItem, group_by_tracking_code
from resi_hub.db_models import (
    ReceiptScan, StockItem, KilatShipment, Platform, ReceiptStage, STAGE_ORDER,
)
from resi_hub.errors import ValidationError
from resi_hub.services.aliases import AliasService

logger = logging.getLogger(__name__)

STATUS_READY = "Ready"
STATUS_NOT_SCANNED = "Belum Scan S1"
STATUS_PENDING_S2 = "Pending S2"
STATUS_NEEDS_INPUT = "Butuh Input"
STATUS_LOW_STOCK = "Stok Kurang"


# ============================================================================
# Matching
# ============================================================================

@dataclass
class ReconciliationResult:
    matched: List[Tuple[Any, List[ExportItem]]] = field(default_factory=list)
    scanned_not_in_export: List[Any] = field(default_factory=list)
    export_not_scanned: List[ExportItem] = field(default_factory=list)

    def summary(self) -> Dict[str, int]:
        return {
            "matched": len(self.matched),
            "matched_items": sum(len(items) for _scan, items in self.matched),
            "scanned_not_in_export": len(self.scanned_not_in_export),
            "export_not_scanned": len(self.export_not_scanned),
        }

    def to_frame(self) -> pd.DataFrame:
        """
        One row per receipt/export line with a ``result`` column, in the
        spirit of a merge with indicator=True.
        """
        records: List[Dict[str, Any]] = []
        for scan, items in self.matched:
            for item in items:
                records.append({**_scan_fields(scan), **_item_fields(item), "result": "matched"})
        for scan in self.scanned_not_in_export:
            records.append({**_scan_fields(scan), "result": "scanned_not_in_export"})
        for item in self.export_not_scanned:
            records.append({
                **_item_fields(item),
                "platform": item.source_platform.value,
                "result": "export_not_scanned",
            })

        columns = [
            "tracking_code", "platform", "sub_channel", "stage", "order_id", "customer_name",
            "sku", "product_name", "quantity", "total_price", "result",
        ]
        df = pd.DataFrame.from_records(records, columns=columns)
        df["quantity"] = df["quantity"].fillna(0).astype(int)
        df["total_price"] = df["total_price"].fillna(0.0).astype(float)
        return df.fillna("")


def _scan_fields(scan: Any) -> Dict[str, Any]:
    platform = getattr(scan, "platform", "")
    stage = getattr(scan, "stage", "")
    return {
        "tracking_code": scan.code,
        "platform": getattr(platform, "value", platform),
        "sub_channel": getattr(scan, "sub_channel", "") or "",
        "stage": getattr(stage, "value", stage),
    }


def _item_fields(item: ExportItem) -> Dict[str, Any]:
    return {
        "tracking_code": item.tracking_code,
        "order_id": item.order_id,
        "customer_name": item.customer_name,
        "sku": item.sku,
        "product_name": item.product_name,
        "quantity": item.quantity,
        "total_price": item.total_price,
    }


def match_receipts(scans: Sequence[Any], items: Sequence[ExportItem]) -> ReconciliationResult:
    """
    Partition scans and export items by exact trimmed tracking code.

    Every scan ends up in ``matched`` or ``scanned_not_in_export`` and every
    item in ``matched`` or ``export_not_scanned``; nothing is counted twice.
    Platform and sub-channel are not compared.
    """
    groups = group_by_tracking_code(items)
    result = ReconciliationResult()
    for scan in scans:
        group = groups.pop((scan.code or "").strip(), None)
        if group:
            result.matched.append((scan, group))
        else:
            result.scanned_not_in_export.append(scan)
    for group in groups.values():
        result.export_not_scanned.extend(group)

    logger.info(f"Reconciliation: {result.summary()}")
    return result


# ============================================================================
# Stage-3 rows
# ============================================================================

def _row_id() -> str:
    return uuid.uuid4().hex


class Stage3Row(BaseModel):
    row_id: str = Field(default_factory=_row_id)
    tracking_code: str
    order_id: str = ""
    customer: str = ""
    source: str = ""                 # listing platform for alias learning
    sku: str = ""
    product_name: str = ""
    variation: str = ""
    part_number: str = ""
    brand: Optional[str] = None
    application: Optional[str] = None
    quantity: int = 1
    total_price: float = 0.0
    stock_qty: int = 0
    is_db_verified: bool = False
    is_stock_valid: bool = False
    status: str = STATUS_NEEDS_INPUT
    is_split: bool = False
    split_count: int = 1
    split_group: Optional[str] = None
    manual_input: bool = False

    @classmethod
    def from_export(cls, item: ExportItem) -> "Stage3Row":
        return cls(
            tracking_code=item.tracking_code.strip(),
            order_id=item.order_id,
            customer=item.customer_name,
            source=item.source_platform.value,
            sku=item.sku,
            product_name=item.product_name,
            variation=item.variation,
            quantity=item.quantity,
            total_price=item.total_price,
        )


def split_row(row: Stage3Row, n: int) -> List[Stage3Row]:
    """
    Split a bundle listing into ``n`` rows sharing its total equally.

    Children carry the parent quantity and an empty part number, so each
    needs manual part input before it can commit.
    """
    if n < 2:
        raise ValidationError("Split needs at least 2 parts")
    share = (row.total_price or 0.0) / n
    children = []
    for _ in range(n):
        child = row.model_copy(update={
            "row_id": _row_id(),
            "part_number": "",
            "brand": None,
            "application": None,
            "total_price": share,
            "stock_qty": 0,
            "is_stock_valid": False,
            "status": STATUS_NEEDS_INPUT,
            "is_split": True,
            "split_count": n,
            "split_group": row.row_id,
            "manual_input": False,
        })
        children.append(child)
    return children


class Stage3Builder:
    """Builds and refreshes Stage-3 rows with bulk lookups."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.aliases = AliasService(db)

    async def build_rows(self, items: Sequence[ExportItem], store: str) -> List[Stage3Row]:
        """Rows for export items whose receipts are not yet processed."""
        processed = await self._processed_codes(store, {i.tracking_code.strip() for i in items})
        rows = [Stage3Row.from_export(i) for i in items if i.tracking_code.strip() not in processed]
        if processed:
            logger.info(f"Stage 3 build: skipped {len(processed)} already processed code(s)")
        return await self.refresh(rows, store)

    async def rows_for_pending(self, store: str) -> List[Stage3Row]:
        """
        Rows for verified receipts with no export data yet. Kilat receipts
        come pre-filled with the parts recorded at scan time.
        """
        result = await self.db.execute(
            select(ReceiptScan)
            .where(
                ReceiptScan.store == store,
                ReceiptScan.stage2_verified_at.is_not(None),
                ReceiptScan.stage3_completed_at.is_(None),
            )
            .order_by(ReceiptScan.stage2_verified_at, ReceiptScan.id)
        )
        receipts = list(result.scalars().all())

        kilat_codes = [r.code for r in receipts if r.platform == Platform.KILAT]
        kilat: Dict[str, List[KilatShipment]] = {}
        if kilat_codes:
            shipments = await self.db.execute(
                select(KilatShipment)
                .where(KilatShipment.store == store, KilatShipment.code.in_(kilat_codes))
                .order_by(KilatShipment.id)
            )
            for s in shipments.scalars().all():
                kilat.setdefault(s.code, []).append(s)

        rows: List[Stage3Row] = []
        for rec in receipts:
            base = {
                "tracking_code": rec.code,
                "order_id": rec.order_id or "",
                "customer": rec.customer or "",
                "source": rec.platform.value,
            }
            shipped = kilat.get(rec.code, [])
            if shipped:
                for s in shipped:
                    rows.append(Stage3Row(
                        **{**base, "customer": base["customer"] or (s.customer or "")},
                        part_number=s.part_number,
                        product_name=s.product_name,
                        quantity=s.quantity,
                        manual_input=True,
                    ))
            else:
                rows.append(Stage3Row(**base))
        return await self.refresh(rows, store)

    async def _processed_codes(self, store: str, codes: set) -> set:
        if not codes:
            return set()
        result = await self.db.execute(
            select(ReceiptScan.code).where(
                ReceiptScan.store == store,
                ReceiptScan.code.in_(codes),
                ReceiptScan.stage3_completed_at.is_not(None),
            )
        )
        processed = set(result.scalars().all())
        if not processed:
            return processed
        # a code with another active record still needs its rows
        active = await self.db.execute(
            select(ReceiptScan.code).where(
                ReceiptScan.store == store,
                ReceiptScan.code.in_(processed),
                ReceiptScan.stage3_completed_at.is_(None),
            )
        )
        return processed - set(active.scalars().all())

    async def _receipt_stages(self, store: str, codes: set) -> Dict[str, Tuple[ReceiptStage, Platform]]:
        """Most advanced active stage per code."""
        if not codes:
            return {}
        result = await self.db.execute(
            select(ReceiptScan).where(ReceiptScan.store == store, ReceiptScan.code.in_(codes))
        )
        best: Dict[str, Tuple[ReceiptStage, Platform]] = {}
        for rec in result.scalars().all():
            stage = rec.stage
            if stage == ReceiptStage.STAGE3_PROCESSED:
                continue
            current = best.get(rec.code)
            if current is None or STAGE_ORDER[stage] > STAGE_ORDER[current[0]]:
                best[rec.code] = (stage, rec.platform)
        return best

    async def refresh(self, rows: List[Stage3Row], store: str) -> List[Stage3Row]:
        """Recompute verification, part resolution, stock and status in place."""
        if not rows:
            return rows

        stages = await self._receipt_stages(store, {r.tracking_code for r in rows})

        # names still needing a part number go through the alias dictionary
        unresolved = [r for r in rows if not r.part_number.strip() and not r.is_split]
        alias_map = await self.aliases.resolve_names(r.product_name for r in unresolved)
        # SKUs printed as a substitute number draw from the main part
        sub_map = await self.aliases.resolve_substitutes(r.sku for r in unresolved)

        candidates = set()
        for r in rows:
            sku = r.sku.strip()
            for part in (r.part_number, sku, sub_map.get(sku, ""), alias_map.get(r.product_name.strip(), "")):
                if part and part.strip():
                    candidates.add(part.strip())
        stock: Dict[str, StockItem] = {}
        if candidates:
            result = await self.db.execute(
                select(StockItem)
                .where(StockItem.store == store, StockItem.part_number.in_(candidates))
                .execution_options(populate_existing=True)
            )
            stock = {s.part_number: s for s in result.scalars().all()}

        for r in rows:
            part = r.part_number.strip()
            if not part and not r.is_split:
                sku = r.sku.strip()
                if sku in stock:
                    part = sku
                elif sub_map.get(sku) in stock:
                    part = sub_map[sku]
                else:
                    part = alias_map.get(r.product_name.strip(), "")
            r.part_number = part
            item = stock.get(part)
            r.stock_qty = item.quantity if item else 0
            if item is not None:
                r.brand = r.brand or item.brand
                r.application = r.application or item.application

        demand: Dict[str, int] = {}
        for r in rows:
            if r.part_number:
                demand[r.part_number] = demand.get(r.part_number, 0) + max(r.quantity, 1)

        for r in rows:
            stage, platform = stages.get(r.tracking_code, (ReceiptStage.UNSCANNED, None))
            r.is_db_verified = stage == ReceiptStage.STAGE2_VERIFIED
            if not r.part_number:
                r.is_stock_valid = False
            elif platform == Platform.KILAT:
                # already decremented when the kilat parcel was scanned
                r.is_stock_valid = True
            else:
                r.is_stock_valid = r.part_number in stock and r.stock_qty >= demand[r.part_number]

            if stage == ReceiptStage.UNSCANNED:
                r.status = STATUS_NOT_SCANNED
            elif stage == ReceiptStage.STAGE1_SCANNED:
                r.status = STATUS_PENDING_S2
            elif not r.part_number:
                r.status = STATUS_NEEDS_INPUT
            elif not r.is_stock_valid:
                r.status = STATUS_LOW_STOCK
            else:
                r.status = STATUS_READY
        return rows
