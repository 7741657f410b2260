# resi_hub/routers/reconcile.py
"""
Reconciliation Router - export upload, Stage-3 worksheet and commit.
"""
from __future__ import annotations
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from resi_hub.adapters import decode_export, parse_marketplace_export
from resi_hub.adapters.marketplace_csv import ExportItem, summarize_export
from resi_hub.database import get_session
from resi_hub.errors import ResiError
from resi_hub.models import (
    ReconcileOut, ReceiptOut, RowsIn, SplitIn, CommitIn, DuplicatesIn, DuplicatesOut,
)
from resi_hub.routers.common import raise_http, store_path
from resi_hub.services.duplicates import flag_duplicates
from resi_hub.services.reconcile import Stage3Builder, Stage3Row, match_receipts, split_row
from resi_hub.services.stages import ResiStageService, BulkResult

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Reconciliation"])


async def _read_export(file: UploadFile) -> Tuple[str, List[ExportItem]]:
    raw = await file.read()
    try:
        text = decode_export(raw)
    except UnicodeDecodeError:
        raise HTTPException(status_code=422, detail={"outcome": "invalid", "message": "Export must be UTF-8"})
    try:
        return parse_marketplace_export(text)
    except ResiError as e:
        raise_http(e)


@router.post("/stores/{store}/reconcile", response_model=ReconcileOut)
async def reconcile_export(
    store: str = Depends(store_path),
    file: UploadFile = File(...),
    date_from: Optional[datetime] = Query(None, description="Only scans from this time"),
    date_to: Optional[datetime] = Query(None),
    db: AsyncSession = Depends(get_session),
):
    """Match an uploaded Shopee/TikTok export against scanned receipts and build Stage-3 rows."""
    platform, items = await _read_export(file)
    logger.info(f"Reconcile upload {file.filename!r} for {store}: {platform}, {len(items)} rows")

    scans = await ResiStageService(db).scanned_receipts(store, date_from=date_from, date_to=date_to)
    result = match_receipts(scans, items)
    rows = await Stage3Builder(db).build_rows(items, store)
    return ReconcileOut(
        platform=platform,
        export_summary=summarize_export(items),
        summary=result.summary(),
        matched_codes=[scan.code for scan, _items in result.matched],
        scanned_not_in_export=[ReceiptOut.model_validate(s) for s in result.scanned_not_in_export],
        export_not_scanned=result.export_not_scanned,
        rows=rows,
    )


@router.post("/stores/{store}/reconcile/report")
async def reconcile_report(
    store: str = Depends(store_path),
    file: UploadFile = File(...),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    db: AsyncSession = Depends(get_session),
):
    """Same partition as /reconcile, as a CSV download."""
    platform, items = await _read_export(file)
    scans = await ResiStageService(db).scanned_receipts(store, date_from=date_from, date_to=date_to)
    df = match_receipts(scans, items).to_frame()
    return Response(
        content=df.to_csv(index=False),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="reconcile_{store}_{platform}.csv"'},
    )


# ============================================================================
# Stage 3 worksheet
# ============================================================================

@router.get("/stores/{store}/stage3/pending", response_model=List[Stage3Row])
async def stage3_pending(
    store: str = Depends(store_path),
    db: AsyncSession = Depends(get_session),
):
    return await Stage3Builder(db).rows_for_pending(store)


@router.post("/stores/{store}/stage3/split", response_model=List[Stage3Row])
async def stage3_split(body: SplitIn, store: str = Depends(store_path)):
    try:
        return split_row(body.row, body.parts)
    except ResiError as e:
        raise_http(e)


@router.post("/stores/{store}/stage3/refresh", response_model=List[Stage3Row])
async def stage3_refresh(
    body: RowsIn,
    store: str = Depends(store_path),
    db: AsyncSession = Depends(get_session),
):
    return await Stage3Builder(db).refresh(body.rows, store)


@router.post("/stores/{store}/stage3/commit", response_model=BulkResult)
async def stage3_commit(
    body: CommitIn,
    store: str = Depends(store_path),
    db: AsyncSession = Depends(get_session),
):
    """Rows are re-checked server-side before anything is posted."""
    rows = await Stage3Builder(db).refresh(body.rows, store)
    return await ResiStageService(db).commit_stage3(rows, store, body.committed_by)


# ============================================================================
# Bulk entry helper
# ============================================================================

@router.post("/bulk/duplicates", response_model=DuplicatesOut)
async def bulk_duplicates(body: DuplicatesIn):
    flags = flag_duplicates(body.codes)
    return DuplicatesOut(flags=flags, duplicate_count=sum(flags))
