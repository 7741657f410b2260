# resi_hub/services/aliases.py
"""
Product alias dictionary.

Marketplace listings name products freely ("Kampas Rem Depan Beat ORI").
Every committed Stage-3 row teaches the dictionary which part number a
listing name stands for, so the next export resolves it without input.

Substitutions cover the other direction: a superseded or cross-brand part
number in a SKU column that should draw from the main part on the shelf.
"""
from __future__ import annotations
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from resi_hub.db_models import PartSubstitution, ProductAlias, StockItem
from resi_hub.errors import DuplicateError, ValidationError

logger = logging.getLogger(__name__)


class AliasService:
    """Alias upsert/search, part substitutions and part lookup with fallbacks."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Dictionary
    # =========================================================================

    async def remember(self, part_number: str, alias_name: str, source: str) -> bool:
        """
        Idempotent upsert keyed by (part_number, alias_name, source).

        Returns:
            True when a new alias row was written.
        """
        part_number = (part_number or "").strip()
        alias_name = (alias_name or "").strip()
        source = (source or "").strip().upper()
        if not part_number or not alias_name:
            return False

        existing = await self.db.execute(
            select(ProductAlias.id).where(
                ProductAlias.part_number == part_number,
                ProductAlias.alias_name == alias_name,
                ProductAlias.source == source,
            )
        )
        if existing.scalar_one_or_none() is not None:
            return False

        try:
            async with self.db.begin_nested():
                self.db.add(ProductAlias(part_number=part_number, alias_name=alias_name, source=source))
        except IntegrityError:
            # another request wrote the same alias first
            return False
        logger.info(f"Alias learned: {alias_name!r} -> {part_number} ({source})")
        return True

    async def search_by_alias(self, query: str, limit: int = 20) -> List[ProductAlias]:
        q = (query or "").strip()
        if not q:
            return []
        result = await self.db.execute(
            select(ProductAlias)
            .where(ProductAlias.alias_name.ilike(f"%{q}%"))
            .order_by(ProductAlias.alias_name)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def aliases_for_part(self, part_number: str) -> List[ProductAlias]:
        result = await self.db.execute(
            select(ProductAlias)
            .where(ProductAlias.part_number == (part_number or "").strip())
            .order_by(ProductAlias.source, ProductAlias.alias_name)
        )
        return list(result.scalars().all())

    async def resolve_names(self, names: Iterable[str], source: Optional[str] = None) -> Dict[str, str]:
        """
        Bulk alias resolution: listing name -> part number.

        When a name maps to several parts the most recently learned wins.
        """
        wanted = sorted({(n or "").strip() for n in names if (n or "").strip()})
        if not wanted:
            return {}
        stmt = select(ProductAlias).where(ProductAlias.alias_name.in_(wanted))
        if source:
            stmt = stmt.where(ProductAlias.source == source.upper())
        stmt = stmt.order_by(ProductAlias.created_at, ProductAlias.id)
        result = await self.db.execute(stmt)
        return {a.alias_name: a.part_number for a in result.scalars().all()}

    # =========================================================================
    # Part substitutions
    # =========================================================================

    async def add_substitution(self, main_part_number: str, substitute_part_number: str) -> bool:
        """
        Map a substitute part number onto the main part kept in stock.

        Returns:
            True when a new mapping was written, False when it already existed.

        Raises:
            ValidationError: a part number is blank or both are the same.
            DuplicateError: the substitute already points at another main part.
        """
        main = (main_part_number or "").strip()
        sub = (substitute_part_number or "").strip()
        if not main or not sub:
            raise ValidationError("Both part numbers are required")
        if main == sub:
            raise ValidationError("A part cannot substitute itself")

        existing = await self.get_substitution(sub)
        if existing is not None:
            if existing.main_part_number == main:
                return False
            raise DuplicateError(f"{sub} already substitutes {existing.main_part_number}")

        try:
            async with self.db.begin_nested():
                self.db.add(PartSubstitution(main_part_number=main, substitute_part_number=sub))
        except IntegrityError:
            raise DuplicateError(f"{sub} already has a substitution")
        logger.info(f"Substitution added: {sub} -> {main}")
        return True

    async def get_substitution(self, substitute_part_number: str) -> Optional[PartSubstitution]:
        result = await self.db.execute(
            select(PartSubstitution).where(
                PartSubstitution.substitute_part_number == (substitute_part_number or "").strip()
            )
        )
        return result.scalar_one_or_none()

    async def resolve_substitutes(self, part_numbers: Iterable[str]) -> Dict[str, str]:
        """Bulk substitute -> main part number for the ones that have a mapping."""
        wanted = sorted({(p or "").strip() for p in part_numbers if (p or "").strip()})
        if not wanted:
            return {}
        result = await self.db.execute(
            select(PartSubstitution).where(PartSubstitution.substitute_part_number.in_(wanted))
        )
        return {s.substitute_part_number: s.main_part_number for s in result.scalars().all()}

    # =========================================================================
    # Part lookup
    # =========================================================================

    async def _stock_item(self, part_number: str, store: str) -> Optional[StockItem]:
        result = await self.db.execute(
            select(StockItem).where(StockItem.store == store, StockItem.part_number == part_number)
        )
        return result.scalar_one_or_none()

    async def lookup_part(self, sku: str, store: str, product_name: Optional[str] = None) -> Optional[StockItem]:
        """
        Stock row for a SKU: exact part number first, then the main part the
        SKU substitutes for, then any alias whose name equals the SKU or the
        listing name.
        """
        sku = (sku or "").strip()
        if sku:
            item = await self._stock_item(sku, store)
            if item is not None:
                return item
            sub = await self.get_substitution(sku)
            if sub is not None:
                item = await self._stock_item(sub.main_part_number, store)
                if item is not None:
                    return item

        names = [n for n in (sku, (product_name or "").strip()) if n]
        if not names:
            return None
        alias = await self.db.execute(
            select(ProductAlias.part_number)
            .where(or_(*[ProductAlias.alias_name == n for n in names]))
            .order_by(ProductAlias.created_at.desc(), ProductAlias.id.desc())
            .limit(1)
        )
        part_number = alias.scalar_one_or_none()
        if part_number is None:
            return None
        return await self._stock_item(part_number, store)
