# tests/test_channels.py
from __future__ import annotations

import pytest
from sqlalchemy import select

from resi_hub.db_models import Platform, ReceiptScan, SoldItem
from resi_hub.errors import DuplicateError, InsufficientStockError, NotFoundError, Outcome, ValidationError
from resi_hub.services.channels import ChannelService, OrderLine
from resi_hub.services.reconcile import STATUS_READY, Stage3Builder
from resi_hub.services.stages import ResiStageService

pytestmark = pytest.mark.asyncio


# ---------------------------------------------------------------------------
# Resellers
# ---------------------------------------------------------------------------

async def test_reseller_master_list(session):
    svc = ChannelService(session)
    await svc.add_reseller("Toko Sinar")
    await svc.add_reseller("Bengkel Jaya")

    with pytest.raises(DuplicateError):
        await svc.add_reseller("toko sinar ")
    with pytest.raises(ValidationError):
        await svc.add_reseller("   ")

    assert [r.name for r in await svc.list_resellers()] == ["Bengkel Jaya", "Toko Sinar"]


async def test_reseller_order_posts_to_ledger(session, add_stock, stock_qty):
    await add_stock("P-100", 5, name="Kampas Rem")
    svc = ChannelService(session)

    posted = await svc.add_reseller_order(
        "mjm", "Toko Sinar", [OrderLine(part_number="P-100", quantity=2, unit_price=50000)], "admin",
    )
    await session.commit()

    assert len(posted) == 1
    sold = posted[0]
    assert sold.platform == Platform.RESELLER
    assert sold.customer == "Toko Sinar"
    assert sold.resi == "-"
    assert sold.name == "Kampas Rem"
    assert sold.total_price == pytest.approx(100000.0)
    assert sold.stock_after == 3
    assert await stock_qty("P-100") == 3


async def test_reseller_order_is_all_or_nothing(session, add_stock, stock_qty):
    await add_stock("P-100", 5)
    await add_stock("P-200", 1)
    svc = ChannelService(session)

    with pytest.raises(InsufficientStockError):
        await svc.add_reseller_order("mjm", "Toko Sinar", [
            OrderLine(part_number="P-100", quantity=2),
            OrderLine(part_number="P-200", quantity=3),
        ])
    with pytest.raises(NotFoundError):
        await svc.add_reseller_order("mjm", "Toko Sinar", [OrderLine(part_number="NOPE")])
    await session.commit()

    assert await stock_qty("P-100") == 5
    assert await stock_qty("P-200") == 1
    assert (await session.execute(select(SoldItem))).scalars().all() == []


# ---------------------------------------------------------------------------
# Kilat
# ---------------------------------------------------------------------------

async def test_kilat_decrements_stock_never_below_zero(session, add_stock, stock_qty):
    await add_stock("P-100", 1, name="Kampas Rem")
    svc = ChannelService(session)

    first = await svc.add_kilat("mjm", "KL001", "MJM", "P-100", scanned_by="andi")
    assert first.stock_after == 0
    assert first.customer == "KILAT MJM"
    assert first.product_name == "Kampas Rem"

    second = await svc.add_kilat("mjm", "KL002", "MJM", "P-100")
    assert second.stock_after == 0
    await session.commit()
    assert await stock_qty("P-100") == 0

    with pytest.raises(DuplicateError):
        await svc.add_kilat("mjm", "KL001", "MJM", "P-100")


async def test_kilat_opens_one_receipt_per_parcel(session, add_stock):
    await add_stock("P-1", 3)
    await add_stock("P-2", 3)
    svc = ChannelService(session)
    await svc.add_kilat("mjm", "KL010", "BJW", "P-1")
    await svc.add_kilat("mjm", "KL010", "BJW", "P-2")

    receipts = (await session.execute(select(ReceiptScan).where(ReceiptScan.code == "KL010"))).scalars().all()
    assert len(receipts) == 1
    assert receipts[0].platform == Platform.KILAT
    assert receipts[0].sub_channel == "BJW"
    assert len(await svc.list_kilat("mjm", sold=False)) == 2
    assert await svc.list_kilat("mjm", sold=True) == []


async def test_kilat_commit_does_not_decrement_twice(session, add_stock, stock_qty):
    await add_stock("P-100", 2)
    channels = ChannelService(session)
    stages = ResiStageService(session)
    await channels.add_kilat("mjm", "KL020", "MJM", "P-100")
    assert (await stages.verify_stage2("KL020", "packer", "mjm")).ok

    rows = await Stage3Builder(session).rows_for_pending("mjm")
    assert [(r.tracking_code, r.part_number, r.status) for r in rows] == [("KL020", "P-100", STATUS_READY)]

    bulk = await stages.commit_stage3(rows, "mjm", "admin")
    await session.commit()
    assert bulk.results[0].outcome == Outcome.success
    assert await stock_qty("P-100") == 1

    sold_kilat = await channels.list_kilat("mjm", sold=True)
    assert [k.code for k in sold_kilat] == ["KL020"]
