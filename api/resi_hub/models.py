# resi_hub/models.py
from __future__ import annotations
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from resi_hub.adapters.marketplace_csv import ExportItem
from resi_hub.db_models import Platform, ReceiptStage
from resi_hub.services.channels import OrderLine
from resi_hub.services.reconcile import Stage3Row
from resi_hub.services.stages import ScanItem


# ---------- receipts ----------

class ReceiptOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    store: str
    code: str
    platform: Platform
    sub_channel: str = ""
    stage: ReceiptStage
    stage1_scanned_at: Optional[datetime] = None
    scanned_by: Optional[str] = None
    stage2_verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    stage3_completed_at: Optional[datetime] = None
    customer: Optional[str] = None
    order_id: Optional[str] = None


class ScanIn(BaseModel):
    code: str
    platform: Platform
    sub_channel: str = ""
    scanned_by: Optional[str] = None


class BulkScanIn(BaseModel):
    items: List[ScanItem]
    scanned_by: Optional[str] = None


class VerifyIn(BaseModel):
    code: str
    verified_by: Optional[str] = None
    # scope for codes shared across channels; unset means any
    platform: Optional[Platform] = None
    sub_channel: Optional[str] = None


class BulkVerifyIn(BaseModel):
    codes: List[str]
    verified_by: Optional[str] = None
    platform: Optional[Platform] = None
    sub_channel: Optional[str] = None


class ReceiptPatch(BaseModel):
    code: Optional[str] = None
    platform: Optional[Platform] = None
    sub_channel: Optional[str] = None


class DeletedOut(BaseModel):
    deleted: ReceiptOut
    undo_depth: int


# ---------- reconciliation ----------

class ReconcileOut(BaseModel):
    platform: str
    export_summary: Dict[str, float]
    summary: Dict[str, int]
    matched_codes: List[str]
    scanned_not_in_export: List[ReceiptOut]
    export_not_scanned: List[ExportItem]
    rows: List[Stage3Row]


class RowsIn(BaseModel):
    rows: List[Stage3Row]


class SplitIn(BaseModel):
    row: Stage3Row
    parts: int = Field(ge=2)


class CommitIn(BaseModel):
    rows: List[Stage3Row]
    committed_by: str = "system"


class DuplicatesIn(BaseModel):
    codes: List[str]


class DuplicatesOut(BaseModel):
    flags: List[bool]
    duplicate_count: int


# ---------- channels ----------

class ResellerIn(BaseModel):
    name: str


class ResellerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class ResellerOrderIn(BaseModel):
    customer: str
    lines: List[OrderLine]
    created_by: str = "system"


class SoldItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    store: str
    sold_at: datetime
    platform: Platform
    sub_channel: str
    customer: Optional[str] = None
    part_number: str
    name: str
    quantity: int
    unit_price: float
    total_price: float
    resi: str
    stock_after: int


class KilatIn(BaseModel):
    code: str
    sub_channel: str = ""
    part_number: str
    product_name: str = ""
    customer: Optional[str] = None
    scanned_by: Optional[str] = None
    notes: Optional[str] = None


class KilatOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    store: str
    code: str
    sub_channel: str
    part_number: str
    product_name: str
    quantity: int
    customer: Optional[str] = None
    is_sold: bool
    stock_after: Optional[int] = None
    scanned_at: datetime


# ---------- catalog ----------

class AliasIn(BaseModel):
    part_number: str
    alias_name: str
    source: str


class AliasOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    part_number: str
    alias_name: str
    source: str


class SubstitutionIn(BaseModel):
    main_part_number: str
    substitute_part_number: str


class SubstitutionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    main_part_number: str
    substitute_part_number: str


class PartOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    part_number: str
    name: str
    brand: Optional[str] = None
    application: Optional[str] = None
    quantity: int
