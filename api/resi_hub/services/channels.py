# resi_hub/services/channels.py
"""
Sales channels that skip CSV reconciliation.

- Resellers: manual orders posted straight to the sold-item ledger, all
  lines or none, with a stock check per line.
- Kilat (instant): the parcel leaves immediately, so stock drops by one at
  scan time (never below zero) and a stage-1 receipt is opened for it.
"""
from __future__ import annotations
import logging
from typing import List, Optional, Sequence

from pydantic import BaseModel, Field
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from resi_hub.db_models import (
    Reseller, KilatShipment, SoldItem, StockItem, ReceiptScan, Platform, utcnow,
)
from resi_hub.errors import (
    ValidationError, DuplicateError, NotFoundError, InsufficientStockError,
)
from resi_hub.services.stages import check_store, clean_code

logger = logging.getLogger(__name__)


class OrderLine(BaseModel):
    part_number: str
    name: str = ""
    brand: Optional[str] = None
    application: Optional[str] = None
    quantity: int = Field(default=1, gt=0)
    unit_price: float = 0.0
    total_price: Optional[float] = None


class ChannelService:
    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Resellers
    # =========================================================================

    async def list_resellers(self) -> List[Reseller]:
        result = await self.db.execute(select(Reseller).order_by(Reseller.name))
        return list(result.scalars().all())

    async def add_reseller(self, name: str) -> Reseller:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Reseller name is required")
        existing = await self.db.execute(
            select(Reseller.id).where(func.lower(Reseller.name) == name.lower())
        )
        if existing.scalar_one_or_none() is not None:
            raise DuplicateError(f"Reseller {name!r} already exists")

        reseller = Reseller(name=name)
        try:
            async with self.db.begin_nested():
                self.db.add(reseller)
        except IntegrityError:
            raise DuplicateError(f"Reseller {name!r} already exists")
        logger.info(f"Reseller added: {name}")
        return reseller

    async def add_reseller_order(
        self,
        store: str,
        customer: str,
        lines: Sequence[OrderLine],
        created_by: str = "system",
    ) -> List[SoldItem]:
        """
        Post a reseller order to the ledger.

        Raises:
            NotFoundError: a part is not stocked in the store.
            InsufficientStockError: a line asks for more than is on the shelf.
        """
        store = check_store(store)
        customer = (customer or "").strip()
        if not customer:
            raise ValidationError("Reseller order needs a customer")
        if not lines:
            raise ValidationError("Reseller order has no lines")

        posted: List[SoldItem] = []
        now = utcnow()
        async with self.db.begin_nested():
            for line in lines:
                part = line.part_number.strip()
                stock = (await self.db.execute(
                    select(StockItem)
                    .where(StockItem.store == store, StockItem.part_number == part)
                    .execution_options(populate_existing=True)
                )).scalar_one_or_none()
                if stock is None:
                    raise NotFoundError(f"Part {part} not found in {store}")
                if stock.quantity < line.quantity:
                    raise InsufficientStockError(
                        f"Not enough stock for {line.name or part}: {stock.quantity} < {line.quantity}"
                    )
                stock.quantity -= line.quantity

                total = line.total_price if line.total_price is not None else line.unit_price * line.quantity
                sold = SoldItem(
                    store=store,
                    sold_at=now,
                    platform=Platform.RESELLER,
                    sub_channel=customer,
                    customer=customer,
                    part_number=part,
                    name=line.name or stock.name,
                    brand=line.brand or stock.brand,
                    application=line.application or stock.application,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    total_price=total,
                    resi="-",
                    stock_after=stock.quantity,
                    created_by=created_by or "system",
                )
                self.db.add(sold)
                await self.db.flush()
                posted.append(sold)

        logger.info(f"Reseller order for {customer} in {store}: {len(posted)} line(s)")
        return posted

    # =========================================================================
    # Kilat
    # =========================================================================

    async def add_kilat(
        self,
        store: str,
        code: str,
        sub_channel: str,
        part_number: str,
        product_name: str = "",
        customer: Optional[str] = None,
        scanned_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> KilatShipment:
        """Record one kilat parcel line and take one unit off the shelf."""
        store = check_store(store)
        code = clean_code(code)
        part = (part_number or "").strip()
        if not part:
            raise ValidationError("Kilat entry needs a part number")
        sub_channel = (sub_channel or "").strip()

        dup = await self.db.execute(
            select(KilatShipment.id).where(
                KilatShipment.store == store,
                KilatShipment.code == code,
                KilatShipment.part_number == part,
            )
        )
        if dup.scalar_one_or_none() is not None:
            raise DuplicateError(f"Kilat {code} / {part} already recorded")

        customer = (customer or "").strip() or f"KILAT {sub_channel.upper()}".strip()
        try:
            async with self.db.begin_nested():
                stock = (await self.db.execute(
                    select(StockItem)
                    .where(StockItem.store == store, StockItem.part_number == part)
                    .execution_options(populate_existing=True)
                )).scalar_one_or_none()
                stock_after = None
                if stock is not None:
                    stock.quantity = max(0, stock.quantity - 1)
                    stock_after = stock.quantity

                shipment = KilatShipment(
                    store=store,
                    code=code,
                    sub_channel=sub_channel,
                    part_number=part,
                    product_name=product_name or (stock.name if stock else ""),
                    quantity=1,
                    customer=customer,
                    stock_after=stock_after,
                    notes=notes,
                    scanned_by=scanned_by,
                )
                self.db.add(shipment)

                # one receipt per parcel, however many lines it carries
                receipt = await self.db.execute(
                    select(ReceiptScan.id).where(
                        ReceiptScan.store == store,
                        ReceiptScan.code == code,
                        ReceiptScan.platform == Platform.KILAT,
                        ReceiptScan.sub_channel == sub_channel,
                    )
                )
                if receipt.scalar_one_or_none() is None:
                    self.db.add(ReceiptScan(
                        store=store,
                        code=code,
                        platform=Platform.KILAT,
                        sub_channel=sub_channel,
                        stage1_scanned_at=utcnow(),
                        scanned_by=scanned_by,
                        customer=customer,
                    ))
        except IntegrityError:
            raise DuplicateError(f"Kilat {code} / {part} already recorded")

        if stock_after is None:
            logger.warning(f"Kilat {code}: part {part} not stocked in {store}; no decrement")
        else:
            logger.info(f"Kilat {code}: {part} stock now {stock_after} in {store}")
        return shipment

    async def list_kilat(self, store: str, sold: Optional[bool] = None) -> List[KilatShipment]:
        store = check_store(store)
        stmt = select(KilatShipment).where(KilatShipment.store == store)
        if sold is not None:
            stmt = stmt.where(KilatShipment.is_sold == sold)
        result = await self.db.execute(stmt.order_by(KilatShipment.scanned_at.desc(), KilatShipment.id.desc()))
        return list(result.scalars().all())
