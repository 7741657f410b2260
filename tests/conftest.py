# tests/conftest.py
from __future__ import annotations

import os
import tempfile
from typing import AsyncGenerator, Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

# ============================================================
# Settings are read at import time: point logs and the default
# database at a scratch directory before importing the app
# ============================================================
_DATA_ROOT = tempfile.mkdtemp(prefix="resi-hub-tests-")
os.environ["RESI_HUB_DATA_ROOT"] = _DATA_ROOT
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DATA_ROOT}/health.db"
os.environ["STORES"] = '["mjm", "bjw"]'

from resi_hub.main import app  # noqa: E402
from resi_hub.database import Base, build_engine, make_session_factory, get_session  # noqa: E402
from resi_hub.db_models import StockItem, ProductAlias  # noqa: E402
from resi_hub.routers import receipts as receipts_router  # noqa: E402


# =========================================
# Per-test SQLite file, tables from metadata
# =========================================
@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    eng = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'resi.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield eng
    finally:
        await eng.dispose()


@pytest.fixture(scope="function")
def session_factory(engine: AsyncEngine):
    return make_session_factory(engine)


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as sess:
        try:
            yield sess
        finally:
            await sess.rollback()


@pytest_asyncio.fixture(scope="function")
async def client(session_factory) -> AsyncGenerator[httpx.AsyncClient, None]:
    async def _override_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as sess:
            try:
                yield sess
                await sess.commit()
            except Exception:
                await sess.rollback()
                raise

    app.dependency_overrides[get_session] = _override_session
    receipts_router._UNDO.clear()
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


# =========================================
# Seed helpers
# =========================================
@pytest.fixture
def add_stock(session_factory):
    async def _add(part_number: str, quantity: int, store: str = "mjm", name: str = "", brand: Optional[str] = None):
        async with session_factory() as sess:
            sess.add(StockItem(store=store, part_number=part_number, name=name or part_number,
                               brand=brand, quantity=quantity))
            await sess.commit()
    return _add


@pytest.fixture
def add_alias(session_factory):
    async def _add(part_number: str, alias_name: str, source: str = "SHOPEE"):
        async with session_factory() as sess:
            sess.add(ProductAlias(part_number=part_number, alias_name=alias_name, source=source))
            await sess.commit()
    return _add


@pytest.fixture
def stock_qty(session_factory):
    async def _get(part_number: str, store: str = "mjm") -> Optional[int]:
        from sqlalchemy import select
        async with session_factory() as sess:
            res = await sess.execute(
                select(StockItem.quantity).where(StockItem.store == store, StockItem.part_number == part_number)
            )
            return res.scalar_one_or_none()
    return _get


SHOPEE_CSV = """Laporan Pesanan Shopee,,,,,,,,,
Periode: 01-01-2024 - 31-01-2024,,,,,,,,,
No. Pesanan,Status Pesanan,No. Resi,Opsi Pengiriman,Username (Pembeli),Nomor Referensi SKU,Nama Produk,Nama Variasi,Jumlah,Total Harga Produk
2401AAA,Selesai,SPX001,SPX Standard,budi,P-100,Kampas Rem Depan,,2,"Rp 150.000"
2401BBB,Batal,SPX002,SPX Standard,citra,P-100,Kampas Rem Depan,,1,"Rp 75.000"
2401CCC,Belum Bayar,SPX003,SPX Standard,dodi,P-100,Kampas Rem Depan,,1,"Rp 75.000"
2401DDD,Sedang Dikirim,SPX004,SPX Standard,eka,,,,1,"Rp 20.000"
2401EEE,Selesai,,SPX Standard,fani,P-100,Kampas Rem Depan,,1,"Rp 75.000"
2401FFF,Selesai,SPX005
"""

TIKTOK_CSV = """Order ID,Order Status,Seller SKU,Product Name,Variation,Quantity,SKU Subtotal After Discount,Tracking ID,Delivery Option,Buyer Username
Platform unique order ID.,Current order status.,Seller SKU,Product name.,Variation,Quantity,Subtotal after discount.,Tracking ID of the package.,Delivery option.,Buyer username.
5770001,Completed,P-200,Oli Mesin,,1,RM 10.00,JX001,Standard,ani
5770002,Unpaid,P-200,Oli Mesin,,1,RM 10.00,JX002,Standard,bayu
5770003,Cancelled,P-200,Oli Mesin,,1,RM 10.00,JX003,Standard,caca
5770004,Shipped,,,,3,"150,000",JX004,Standard,dina
"""


@pytest.fixture
def shopee_csv() -> str:
    return SHOPEE_CSV


@pytest.fixture
def tiktok_csv() -> str:
    return TIKTOK_CSV
