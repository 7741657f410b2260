# resi_hub/routers/catalog.py
"""
Catalog Router - product alias dictionary, part substitutions and part lookup.
"""
from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from resi_hub.database import get_session
from resi_hub.errors import ResiError
from resi_hub.models import AliasIn, AliasOut, PartOut, SubstitutionIn, SubstitutionOut
from resi_hub.routers.common import raise_http, store_path
from resi_hub.services.aliases import AliasService

router = APIRouter(tags=["Catalog"])


@router.get("/aliases", response_model=List[AliasOut])
async def search_aliases(
    q: str = Query(..., min_length=1),
    limit: int = Query(20, ge=1, le=200),
    db: AsyncSession = Depends(get_session),
):
    return [AliasOut.model_validate(a) for a in await AliasService(db).search_by_alias(q, limit=limit)]


@router.get("/aliases/{part_number}", response_model=List[AliasOut])
async def aliases_for_part(part_number: str, db: AsyncSession = Depends(get_session)):
    return [AliasOut.model_validate(a) for a in await AliasService(db).aliases_for_part(part_number)]


@router.post("/aliases")
async def add_alias(body: AliasIn, db: AsyncSession = Depends(get_session)):
    if not body.part_number.strip() or not body.alias_name.strip():
        raise HTTPException(status_code=422, detail="part_number and alias_name are required")
    created = await AliasService(db).remember(body.part_number, body.alias_name, body.source)
    return {"created": created}


@router.post("/substitutions", status_code=201)
async def add_substitution(body: SubstitutionIn, db: AsyncSession = Depends(get_session)):
    try:
        created = await AliasService(db).add_substitution(body.main_part_number, body.substitute_part_number)
    except ResiError as e:
        raise_http(e)
    return {"created": created}


@router.get("/substitutions/{part_number}", response_model=SubstitutionOut)
async def get_substitution(part_number: str, db: AsyncSession = Depends(get_session)):
    sub = await AliasService(db).get_substitution(part_number)
    if sub is None:
        raise HTTPException(status_code=404, detail=f"No substitution for {part_number}")
    return SubstitutionOut.model_validate(sub)


@router.get("/stores/{store}/parts/{sku}", response_model=PartOut)
async def lookup_part(
    sku: str,
    store: str = Depends(store_path),
    name: Optional[str] = Query(None, description="Listing name for alias fallback"),
    db: AsyncSession = Depends(get_session),
):
    item = await AliasService(db).lookup_part(sku, store, product_name=name)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Part {sku} not found")
    return PartOut.model_validate(item)
