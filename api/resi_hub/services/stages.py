# resi_hub/services/stages.py
"""
Stage Transition Engine.

UNSCANNED -> STAGE1_SCANNED -> STAGE2_VERIFIED -> STAGE3_PROCESSED

Handles:
- Stage 1 warehouse scans (single and bulk) with database-enforced duplicate scope
- Stage 2 packing verification (conditional update, one station wins)
- Delete / restore / correct with an undo stack owned by the caller
- Stage 3 commit: stock decrement, sold-item ledger, line items, alias learning

Business failures come back as ``ScanResult`` outcomes; storage faults
(``SQLAlchemyError``) propagate.
"""
from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel
from sqlalchemy import select, update, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from resi_hub.db_models import (
    ReceiptScan, ReceiptItem, SoldItem, StockItem, KilatShipment,
    Platform, ReceiptStage, utcnow,
)
from resi_hub.errors import (
    Outcome, ResiError, ValidationError, DuplicateError, NotFoundError,
    AlreadyVerifiedError, LedgerCommittedError, InsufficientStockError, NotReadyError,
)
from resi_hub.services.aliases import AliasService
from resi_hub.services.reconcile import Stage3Row, STATUS_READY
from resi_hub.services.undo import UndoStack, Snapshot
from resi_hub.settings import settings

logger = logging.getLogger(__name__)

# platforms whose sub_channel names a reseller / destination country
SUB_CHANNEL_REQUIRED = (Platform.RESELLER, Platform.EXPORT)
EDITABLE_FIELDS = ("code", "platform", "sub_channel")
# listing names worth learning as aliases
ALIAS_SOURCES = (Platform.SHOPEE.value, Platform.TIKTOK.value)


# ============================================================================
# Result types
# ============================================================================

class ScanResult(BaseModel):
    outcome: Outcome
    code: str = ""
    message: str = ""
    receipt_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.success


class BulkResult(BaseModel):
    results: List[ScanResult]
    success_count: int = 0
    failed_count: int = 0
    counts: Dict[str, int] = {}

    @classmethod
    def from_results(cls, results: List[ScanResult]) -> "BulkResult":
        counts: Dict[str, int] = {}
        for r in results:
            counts[r.outcome.value] = counts.get(r.outcome.value, 0) + 1
        ok = counts.get(Outcome.success.value, 0)
        return cls(results=results, success_count=ok, failed_count=len(results) - ok, counts=counts)


class ScanItem(BaseModel):
    code: str
    platform: Platform
    sub_channel: str = ""
    scanned_by: Optional[str] = None


def check_store(store: str) -> str:
    s = (store or "").strip().lower()
    if s not in [x.lower() for x in settings.STORES]:
        raise ValidationError(f"Unknown store: {store!r}")
    return s


def clean_code(code: Optional[str]) -> str:
    c = (code or "").strip()
    if not c:
        raise ValidationError("Resi code is required")
    return c


def snapshot_receipt(rec: ReceiptScan) -> Snapshot:
    """Every column of the record, keyed by attribute name."""
    return {col.key: getattr(rec, col.key) for col in ReceiptScan.__table__.columns}


def _as_platform(value: Any) -> Platform:
    try:
        return value if isinstance(value, Platform) else Platform(str(value).strip().upper())
    except ValueError:
        raise ValidationError(f"Unknown platform: {value!r}")


# ============================================================================
# Service
# ============================================================================

class ResiStageService:
    """Stage transitions for receipt scans in one store partition."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.aliases = AliasService(db)

    # =========================================================================
    # Lookups
    # =========================================================================

    async def get_receipt(self, receipt_id: str, store: str) -> ReceiptScan:
        store = check_store(store)
        result = await self.db.execute(
            select(ReceiptScan).where(ReceiptScan.id == receipt_id, ReceiptScan.store == store)
        )
        rec = result.scalar_one_or_none()
        if rec is None:
            raise NotFoundError(f"Receipt {receipt_id} not found")
        return rec

    async def _find_in_scope(
        self, store: str, code: str, platform: Platform, sub_channel: str,
        exclude_id: Optional[str] = None,
    ) -> Optional[ReceiptScan]:
        stmt = select(ReceiptScan).where(
            ReceiptScan.store == store,
            ReceiptScan.code == code,
            ReceiptScan.platform == platform,
            ReceiptScan.sub_channel == sub_channel,
        )
        if exclude_id:
            stmt = stmt.where(ReceiptScan.id != exclude_id)
        result = await self.db.execute(stmt.limit(1))
        return result.scalar_one_or_none()

    async def list_receipts(
        self,
        store: str,
        stage: Optional[ReceiptStage] = None,
        platform: Optional[Platform] = None,
        sub_channel: Optional[str] = None,
        search: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = 500,
    ) -> List[ReceiptScan]:
        """Receipt history, newest scan first."""
        store = check_store(store)
        stmt = select(ReceiptScan).where(ReceiptScan.store == store)

        if stage == ReceiptStage.STAGE3_PROCESSED:
            stmt = stmt.where(ReceiptScan.stage3_completed_at.is_not(None))
        elif stage == ReceiptStage.STAGE2_VERIFIED:
            stmt = stmt.where(
                ReceiptScan.stage2_verified_at.is_not(None),
                ReceiptScan.stage3_completed_at.is_(None),
            )
        elif stage == ReceiptStage.STAGE1_SCANNED:
            stmt = stmt.where(
                ReceiptScan.stage1_scanned_at.is_not(None),
                ReceiptScan.stage2_verified_at.is_(None),
            )
        elif stage == ReceiptStage.UNSCANNED:
            stmt = stmt.where(ReceiptScan.stage1_scanned_at.is_(None))

        if platform is not None:
            stmt = stmt.where(ReceiptScan.platform == platform)
        if sub_channel:
            stmt = stmt.where(ReceiptScan.sub_channel == sub_channel)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(or_(ReceiptScan.code.ilike(pattern), ReceiptScan.customer.ilike(pattern)))
        if date_from is not None:
            stmt = stmt.where(ReceiptScan.created_at >= date_from)
        if date_to is not None:
            stmt = stmt.where(ReceiptScan.created_at <= date_to)

        stmt = stmt.order_by(ReceiptScan.stage1_scanned_at.desc(), ReceiptScan.created_at.desc()).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def scanned_receipts(
        self,
        store: str,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> List[ReceiptScan]:
        """Every record at stage 1 or later, processed ones included, oldest first."""
        store = check_store(store)
        stmt = select(ReceiptScan).where(
            ReceiptScan.store == store,
            ReceiptScan.stage1_scanned_at.is_not(None),
        )
        if date_from is not None:
            stmt = stmt.where(ReceiptScan.stage1_scanned_at >= date_from)
        if date_to is not None:
            stmt = stmt.where(ReceiptScan.stage1_scanned_at <= date_to)
        result = await self.db.execute(stmt.order_by(ReceiptScan.stage1_scanned_at, ReceiptScan.id))
        return list(result.scalars().all())

    # =========================================================================
    # Stage 1
    # =========================================================================

    async def _scan_stage1(
        self, code: str, platform: Any, sub_channel: Optional[str], store: str, scanned_by: Optional[str],
    ) -> ReceiptScan:
        store = check_store(store)
        code = clean_code(code)
        platform = _as_platform(platform)
        sub_channel = (sub_channel or "").strip()
        if platform in SUB_CHANNEL_REQUIRED and not sub_channel:
            raise ValidationError(f"{platform.value} scans need a sub-channel")

        if await self._find_in_scope(store, code, platform, sub_channel) is not None:
            raise DuplicateError(f"Resi {code} already scanned")

        rec = ReceiptScan(
            store=store,
            code=code,
            platform=platform,
            sub_channel=sub_channel,
            stage1_scanned_at=utcnow(),
            scanned_by=(scanned_by or "").strip() or None,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(rec)
        except IntegrityError:
            # a concurrent station inserted the same scope first
            raise DuplicateError(f"Resi {code} already scanned")
        return rec

    async def scan_stage1(
        self,
        code: str,
        platform: Any,
        sub_channel: Optional[str],
        store: str,
        scanned_by: Optional[str] = None,
    ) -> ScanResult:
        try:
            rec = await self._scan_stage1(code, platform, sub_channel, store, scanned_by)
        except ResiError as e:
            logger.info(f"Stage 1 scan {code!r} in {store}: {e.outcome.value} ({e.message})")
            return ScanResult(outcome=e.outcome, code=(code or "").strip(), message=e.message)
        logger.info(f"Stage 1 scan {rec.code} ({rec.platform.value}/{rec.sub_channel or '-'}) in {rec.store}")
        return ScanResult(outcome=Outcome.success, code=rec.code, message="Scanned", receipt_id=rec.id)

    async def scan_stage1_bulk(
        self, items: Sequence[ScanItem], store: str, scanned_by: Optional[str] = None,
    ) -> BulkResult:
        """Sequential scans, each in its own savepoint; one bad row never sinks the batch."""
        results = []
        for item in items:
            results.append(await self.scan_stage1(
                item.code, item.platform, item.sub_channel, store, item.scanned_by or scanned_by,
            ))
        bulk = BulkResult.from_results(results)
        logger.info(f"Stage 1 bulk in {store}: {bulk.success_count} ok, {bulk.failed_count} failed")
        return bulk

    # =========================================================================
    # Stage 2
    # =========================================================================

    async def _verify_stage2(
        self, code: str, verified_by: Optional[str], store: str,
        platform: Any = None, sub_channel: Optional[str] = None,
    ) -> ReceiptScan:
        store = check_store(store)
        code = clean_code(code)

        stmt = select(ReceiptScan).where(
            ReceiptScan.store == store,
            ReceiptScan.code == code,
            ReceiptScan.stage1_scanned_at.is_not(None),
        )
        scoped = platform is not None or sub_channel is not None
        if platform is not None:
            stmt = stmt.where(ReceiptScan.platform == _as_platform(platform))
        if sub_channel is not None:
            stmt = stmt.where(ReceiptScan.sub_channel == sub_channel.strip())
        result = await self.db.execute(stmt.order_by(ReceiptScan.stage1_scanned_at, ReceiptScan.id))
        candidates = list(result.scalars().all())
        if not candidates:
            raise NotFoundError(f"Resi {code} has no stage 1 scan")

        # unscoped: a verified sibling means this parcel was packed already
        if not scoped and any(r.stage2_verified_at is not None for r in candidates):
            raise AlreadyVerifiedError(f"Resi {code} already verified")
        pending = [r for r in candidates if r.stage2_verified_at is None]
        if not pending:
            raise AlreadyVerifiedError(f"Resi {code} already verified")
        target = pending[0]

        now = utcnow()
        upd = await self.db.execute(
            update(ReceiptScan)
            .where(ReceiptScan.id == target.id, ReceiptScan.stage2_verified_at.is_(None))
            .values(stage2_verified_at=now, verified_by=(verified_by or "").strip() or None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if upd.rowcount == 0:
            raise AlreadyVerifiedError(f"Resi {code} already verified")
        await self.db.refresh(target)
        return target

    async def verify_stage2(
        self,
        code: str,
        verified_by: Optional[str],
        store: str,
        platform: Any = None,
        sub_channel: Optional[str] = None,
    ) -> ScanResult:
        """
        Packing confirmation. Without ``platform``/``sub_channel`` any verified
        record with the code makes this an ``already_verified`` alert; naming
        the scope verifies that channel's record only.
        """
        try:
            rec = await self._verify_stage2(code, verified_by, store, platform, sub_channel)
        except ResiError as e:
            logger.info(f"Stage 2 verify {code!r} in {store}: {e.outcome.value}")
            return ScanResult(outcome=e.outcome, code=(code or "").strip(), message=e.message)
        logger.info(f"Stage 2 verified {rec.code} in {rec.store} by {rec.verified_by or '-'}")
        return ScanResult(outcome=Outcome.success, code=rec.code, message="Verified", receipt_id=rec.id)

    async def verify_stage2_bulk(
        self,
        codes: Iterable[str],
        verified_by: Optional[str],
        store: str,
        platform: Any = None,
        sub_channel: Optional[str] = None,
    ) -> BulkResult:
        results = [await self.verify_stage2(code, verified_by, store, platform, sub_channel) for code in codes]
        return BulkResult.from_results(results)

    # =========================================================================
    # Delete / restore / correct
    # =========================================================================

    async def delete_receipt(
        self,
        receipt_id: str,
        store: str,
        undo: Optional[UndoStack] = None,
        confirmed: bool = False,
    ) -> Snapshot:
        """
        Hard-delete a receipt and return its prior snapshot.

        Raises:
            NotFoundError: no such receipt in this store.
            ValidationError: verified receipt deleted without ``confirmed``.
            LedgerCommittedError: receipt already posted to the sold-item ledger.
        """
        rec = await self.get_receipt(receipt_id, store)
        stage = rec.stage
        if stage == ReceiptStage.STAGE3_PROCESSED:
            raise LedgerCommittedError(f"Resi {rec.code} is already processed; reverse the sale instead")
        if stage == ReceiptStage.STAGE2_VERIFIED and not confirmed:
            raise ValidationError(f"Resi {rec.code} is verified; deletion needs confirmation")

        snap = snapshot_receipt(rec)
        await self.db.delete(rec)
        await self.db.flush()
        if undo is not None:
            undo.push(snap)
        logger.info(f"Deleted receipt {snap['code']} ({receipt_id}) from {snap['store']} at {stage.value}")
        return snap

    async def restore_receipt(self, snapshot: Snapshot, store: str) -> ScanResult:
        """Reinsert a deleted receipt verbatim, same id, after a duplicate re-check."""
        code = str(snapshot.get("code") or "")
        try:
            store = check_store(store)
            if (snapshot.get("store") or "").lower() != store:
                raise ValidationError("Snapshot belongs to another store")
            data = dict(snapshot)
            data["platform"] = _as_platform(data.get("platform"))
            data["sub_channel"] = data.get("sub_channel") or ""

            existing = await self.db.get(ReceiptScan, data.get("id"))
            if existing is not None:
                raise DuplicateError(f"Receipt {data.get('id')} already exists")
            if await self._find_in_scope(store, code, data["platform"], data["sub_channel"]) is not None:
                raise DuplicateError(f"Resi {code} was scanned again since it was deleted")

            rec = ReceiptScan(**data)
            try:
                async with self.db.begin_nested():
                    self.db.add(rec)
            except IntegrityError:
                raise DuplicateError(f"Resi {code} already scanned")
        except ResiError as e:
            logger.info(f"Restore of {code!r} refused: {e.outcome.value}")
            return ScanResult(outcome=e.outcome, code=code, message=e.message)

        logger.info(f"Restored receipt {rec.code} ({rec.id}) in {store}")
        return ScanResult(outcome=Outcome.success, code=rec.code, message="Restored", receipt_id=rec.id)

    async def undo_last(self, undo: UndoStack, store: str) -> ScanResult:
        """Pop one snapshot and restore it. A refused restore stays popped."""
        snap = undo.pop()
        if snap is None:
            return ScanResult(outcome=Outcome.not_found, message="Nothing to undo")
        return await self.restore_receipt(snap, store)

    async def update_receipt(self, receipt_id: str, fields: Dict[str, Any], store: str) -> ReceiptScan:
        """Correct code / platform / sub_channel of a receipt."""
        unknown = sorted(set(fields) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Fields not editable: {', '.join(unknown)}")

        rec = await self.get_receipt(receipt_id, store)
        if rec.stage == ReceiptStage.STAGE3_PROCESSED:
            raise LedgerCommittedError(f"Resi {rec.code} is already processed")

        code = clean_code(fields["code"]) if "code" in fields else rec.code
        platform = _as_platform(fields["platform"]) if "platform" in fields else rec.platform
        sub_channel = (fields.get("sub_channel", rec.sub_channel) or "").strip()
        if platform in SUB_CHANNEL_REQUIRED and not sub_channel:
            raise ValidationError(f"{platform.value} receipts need a sub-channel")

        if await self._find_in_scope(rec.store, code, platform, sub_channel, exclude_id=rec.id) is not None:
            raise DuplicateError(f"Resi {code} already exists in that channel")

        try:
            async with self.db.begin_nested():
                rec.code = code
                rec.platform = platform
                rec.sub_channel = sub_channel
        except IntegrityError:
            raise DuplicateError(f"Resi {code} already exists in that channel")
        logger.info(f"Corrected receipt {rec.id}: {code} {platform.value}/{sub_channel or '-'}")
        return rec

    # =========================================================================
    # Stage 3
    # =========================================================================

    async def _commit_one(self, code: str, rows: List[Stage3Row], store: str, committed_by: str) -> ReceiptScan:
        not_ready = [r for r in rows if r.status != STATUS_READY]
        if not_ready:
            raise NotReadyError(f"Resi {code}: {len(not_ready)} row(s) not Ready ({not_ready[0].status})")

        result = await self.db.execute(
            select(ReceiptScan)
            .where(ReceiptScan.store == store, ReceiptScan.code == code)
            .order_by(ReceiptScan.stage1_scanned_at, ReceiptScan.id)
        )
        receipts = list(result.scalars().all())
        target = next((r for r in receipts if r.stage == ReceiptStage.STAGE2_VERIFIED), None)
        if target is None:
            if any(r.stage == ReceiptStage.STAGE3_PROCESSED for r in receipts):
                raise LedgerCommittedError(f"Resi {code} already processed")
            raise NotFoundError(f"Resi {code} is not verified in {store}")

        # kilat stock left the shelf at scan time
        stock_taken = target.platform == Platform.KILAT
        customer = next((r.customer for r in rows if r.customer), None)
        order_id = next((r.order_id for r in rows if r.order_id), None)
        now = utcnow()

        async with self.db.begin_nested():
            for row in rows:
                qty = max(int(row.quantity or 1), 1)
                part = row.part_number.strip()
                if not stock_taken:
                    upd = await self.db.execute(
                        update(StockItem)
                        .where(
                            StockItem.store == store,
                            StockItem.part_number == part,
                            StockItem.quantity >= qty,
                        )
                        .values(quantity=StockItem.quantity - qty, updated_at=now)
                        .execution_options(synchronize_session=False)
                    )
                    if upd.rowcount == 0:
                        raise InsufficientStockError(f"Resi {code}: not enough stock for {part}")

                stock = (await self.db.execute(
                    select(StockItem)
                    .where(StockItem.store == store, StockItem.part_number == part)
                    .execution_options(populate_existing=True)
                )).scalar_one_or_none()
                if stock is None and not stock_taken:
                    raise NotFoundError(f"Part {part} not in {store} stock")
                stock_after = stock.quantity if stock is not None else 0

                unit_price = (row.total_price or 0.0) / qty
                self.db.add(SoldItem(
                    store=store,
                    sold_at=now,
                    platform=target.platform,
                    sub_channel=target.sub_channel,
                    customer=row.customer or customer,
                    part_number=part,
                    name=row.product_name or (stock.name if stock else ""),
                    brand=row.brand or (stock.brand if stock else None),
                    application=row.application or (stock.application if stock else None),
                    quantity=qty,
                    unit_price=unit_price,
                    total_price=row.total_price or 0.0,
                    resi=code,
                    stock_after=stock_after,
                    created_by=committed_by or "system",
                ))
                self.db.add(ReceiptItem(
                    receipt_id=target.id,
                    store=store,
                    part_number=part,
                    product_name=row.product_name,
                    brand=row.brand or (stock.brand if stock else None),
                    application=row.application or (stock.application if stock else None),
                    quantity=qty,
                    unit_price=unit_price,
                    total_price=row.total_price or 0.0,
                    sku_from_csv=row.sku or None,
                    is_split_item=row.is_split,
                    split_count=row.split_count,
                    manual_input=row.manual_input,
                ))
                if row.product_name and row.source in ALIAS_SOURCES:
                    await self.aliases.remember(part, row.product_name, row.source)

            if stock_taken:
                await self.db.execute(
                    update(KilatShipment)
                    .where(KilatShipment.store == store, KilatShipment.code == code)
                    .values(is_sold=True)
                    .execution_options(synchronize_session=False)
                )

            upd = await self.db.execute(
                update(ReceiptScan)
                .where(
                    ReceiptScan.id == target.id,
                    ReceiptScan.stage2_verified_at.is_not(None),
                    ReceiptScan.stage3_completed_at.is_(None),
                )
                .values(
                    stage3_completed_at=now,
                    customer=customer or target.customer,
                    order_id=order_id or target.order_id,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if upd.rowcount == 0:
                raise LedgerCommittedError(f"Resi {code} already processed")

        await self.db.refresh(target)
        return target

    async def commit_stage3(self, rows: Sequence[Stage3Row], store: str, committed_by: str) -> BulkResult:
        """
        Post Ready rows to the ledger, one savepoint per receipt.

        Rows are grouped by tracking code; a receipt commits whole or not at all.
        """
        try:
            store = check_store(store)
        except ValidationError as e:
            return BulkResult.from_results([ScanResult(outcome=e.outcome, message=e.message)])

        groups: Dict[str, List[Stage3Row]] = {}
        for row in rows:
            groups.setdefault(row.tracking_code.strip(), []).append(row)

        results: List[ScanResult] = []
        for code, group in groups.items():
            try:
                rec = await self._commit_one(code, group, store, committed_by)
            except ResiError as e:
                logger.info(f"Stage 3 commit {code} in {store}: {e.outcome.value} ({e.message})")
                results.append(ScanResult(outcome=e.outcome, code=code, message=e.message))
                continue
            results.append(ScanResult(
                outcome=Outcome.success, code=code, message=f"{len(group)} item(s) posted", receipt_id=rec.id,
            ))

        bulk = BulkResult.from_results(results)
        logger.info(f"Stage 3 commit in {store} by {committed_by}: {bulk.success_count} ok, {bulk.failed_count} failed")
        return bulk
