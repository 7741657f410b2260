# resi_hub/routers/channels.py
"""
Channels Router - resellers and kilat (instant) shipments.
"""
from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from resi_hub.database import get_session
from resi_hub.errors import ResiError
from resi_hub.models import (
    ResellerIn, ResellerOut, ResellerOrderIn, SoldItemOut, KilatIn, KilatOut,
)
from resi_hub.routers.common import raise_http, store_path
from resi_hub.services.channels import ChannelService

router = APIRouter(tags=["Channels"])


@router.get("/resellers", response_model=List[ResellerOut])
async def list_resellers(db: AsyncSession = Depends(get_session)):
    return [ResellerOut.model_validate(r) for r in await ChannelService(db).list_resellers()]


@router.post("/resellers", response_model=ResellerOut, status_code=201)
async def add_reseller(body: ResellerIn, db: AsyncSession = Depends(get_session)):
    try:
        reseller = await ChannelService(db).add_reseller(body.name)
    except ResiError as e:
        raise_http(e)
    return ResellerOut.model_validate(reseller)


@router.post("/stores/{store}/resellers/orders", response_model=List[SoldItemOut], status_code=201)
async def add_reseller_order(
    body: ResellerOrderIn,
    store: str = Depends(store_path),
    db: AsyncSession = Depends(get_session),
):
    svc = ChannelService(db)
    try:
        posted = await svc.add_reseller_order(store, body.customer, body.lines, body.created_by)
    except ResiError as e:
        raise_http(e)
    return [SoldItemOut.model_validate(s) for s in posted]


@router.post("/stores/{store}/kilat", response_model=KilatOut, status_code=201)
async def add_kilat(
    body: KilatIn,
    store: str = Depends(store_path),
    db: AsyncSession = Depends(get_session),
):
    try:
        shipment = await ChannelService(db).add_kilat(
            store, body.code, body.sub_channel, body.part_number,
            product_name=body.product_name, customer=body.customer,
            scanned_by=body.scanned_by, notes=body.notes,
        )
    except ResiError as e:
        raise_http(e)
    return KilatOut.model_validate(shipment)


@router.get("/stores/{store}/kilat", response_model=List[KilatOut])
async def list_kilat(
    store: str = Depends(store_path),
    sold: Optional[bool] = Query(None),
    db: AsyncSession = Depends(get_session),
):
    return [KilatOut.model_validate(k) for k in await ChannelService(db).list_kilat(store, sold=sold)]
