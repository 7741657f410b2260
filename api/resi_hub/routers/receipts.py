# resi_hub/routers/receipts.py
"""
Receipts Router - stage 1 scans, stage 2 verification, corrections and undo.
"""
from __future__ import annotations
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from resi_hub.database import get_session
from resi_hub.db_models import Platform, ReceiptScan, ReceiptStage
from resi_hub.errors import ResiError
from resi_hub.models import (
    ReceiptOut, ScanIn, BulkScanIn, VerifyIn, BulkVerifyIn, ReceiptPatch, DeletedOut,
)
from resi_hub.routers.common import checked, raise_http, store_path
from resi_hub.services.stages import ResiStageService, ScanResult, BulkResult
from resi_hub.services.undo import UndoStack

router = APIRouter(prefix="/stores/{store}/receipts", tags=["Receipts"])

# ============================================================================
# Undo stacks, one per (store, operator); process-local like the scan stations
# ============================================================================

UNDO_LIMIT = 50
_UNDO: Dict[Tuple[str, str], UndoStack] = {}


def undo_stack(store: str, operator: str) -> UndoStack:
    key = (store, (operator or "default").strip().lower())
    if key not in _UNDO:
        _UNDO[key] = UndoStack(limit=UNDO_LIMIT)
    return _UNDO[key]


# ============================================================================
# Stage 1 / Stage 2
# ============================================================================

@router.post("/scan", response_model=ScanResult)
async def scan_receipt(
    body: ScanIn,
    store: str = Depends(store_path),
    db: AsyncSession = Depends(get_session),
):
    svc = ResiStageService(db)
    return checked(await svc.scan_stage1(body.code, body.platform, body.sub_channel, store, body.scanned_by))


@router.post("/scan/bulk", response_model=BulkResult)
async def scan_receipts_bulk(
    body: BulkScanIn,
    store: str = Depends(store_path),
    db: AsyncSession = Depends(get_session),
):
    return await ResiStageService(db).scan_stage1_bulk(body.items, store, body.scanned_by)


@router.post("/verify", response_model=ScanResult)
async def verify_receipt(
    body: VerifyIn,
    store: str = Depends(store_path),
    db: AsyncSession = Depends(get_session),
):
    return checked(await ResiStageService(db).verify_stage2(
        body.code, body.verified_by, store, platform=body.platform, sub_channel=body.sub_channel,
    ))


@router.post("/verify/bulk", response_model=BulkResult)
async def verify_receipts_bulk(
    body: BulkVerifyIn,
    store: str = Depends(store_path),
    db: AsyncSession = Depends(get_session),
):
    return await ResiStageService(db).verify_stage2_bulk(
        body.codes, body.verified_by, store, platform=body.platform, sub_channel=body.sub_channel,
    )


# ============================================================================
# Listing / corrections
# ============================================================================

@router.get("", response_model=List[ReceiptOut])
async def list_receipts(
    store: str = Depends(store_path),
    stage: Optional[ReceiptStage] = Query(None),
    platform: Optional[Platform] = Query(None),
    sub_channel: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Substring of code or customer"),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    limit: int = Query(500, ge=1, le=5000),
    db: AsyncSession = Depends(get_session),
):
    rows = await ResiStageService(db).list_receipts(
        store, stage=stage, platform=platform, sub_channel=sub_channel,
        search=search, date_from=date_from, date_to=date_to, limit=limit,
    )
    return [ReceiptOut.model_validate(r) for r in rows]


@router.get("/{receipt_id}", response_model=ReceiptOut)
async def get_receipt(
    receipt_id: str,
    store: str = Depends(store_path),
    db: AsyncSession = Depends(get_session),
):
    try:
        rec = await ResiStageService(db).get_receipt(receipt_id, store)
    except ResiError as e:
        raise_http(e)
    return ReceiptOut.model_validate(rec)


@router.patch("/{receipt_id}", response_model=ReceiptOut)
async def update_receipt(
    receipt_id: str,
    body: ReceiptPatch,
    store: str = Depends(store_path),
    db: AsyncSession = Depends(get_session),
):
    fields = body.model_dump(exclude_unset=True)
    try:
        rec = await ResiStageService(db).update_receipt(receipt_id, fields, store)
    except ResiError as e:
        raise_http(e)
    return ReceiptOut.model_validate(rec)


@router.delete("/{receipt_id}", response_model=DeletedOut)
async def delete_receipt(
    receipt_id: str,
    store: str = Depends(store_path),
    confirmed: bool = Query(False, description="Required for verified receipts"),
    operator: str = Query("default"),
    db: AsyncSession = Depends(get_session),
):
    try:
        snap = await ResiStageService(db).delete_receipt(receipt_id, store, confirmed=confirmed)
    except ResiError as e:
        raise_http(e)
    # the stack only ever holds deletions that reached the database
    await db.commit()
    stack = undo_stack(store, operator)
    stack.push(snap)
    return DeletedOut(deleted=ReceiptOut.model_validate(ReceiptScan(**snap)), undo_depth=len(stack))


@router.post("/undo", response_model=ScanResult)
async def undo_delete(
    store: str = Depends(store_path),
    operator: str = Query("default"),
    db: AsyncSession = Depends(get_session),
):
    """Restore the operator's most recent deletion."""
    return checked(await ResiStageService(db).undo_last(undo_stack(store, operator), store))
