# tests/test_reconcile.py
from __future__ import annotations

from types import SimpleNamespace

import pytest
from sqlalchemy import select

from resi_hub.adapters.marketplace_csv import ExportItem
from resi_hub.db_models import Platform, ProductAlias, ReceiptItem, ReceiptStage, SoldItem
from resi_hub.errors import LedgerCommittedError, Outcome, ValidationError
from resi_hub.services.aliases import AliasService
from resi_hub.services.reconcile import (
    STATUS_LOW_STOCK, STATUS_NEEDS_INPUT, STATUS_NOT_SCANNED, STATUS_PENDING_S2, STATUS_READY,
    Stage3Builder, Stage3Row, match_receipts, split_row,
)
from resi_hub.services.stages import ResiStageService


def _item(code: str, sku: str = "", name: str = "Produk", qty: int = 1, total: float = 0.0,
          platform: Platform = Platform.SHOPEE) -> ExportItem:
    return ExportItem(tracking_code=code, sku=sku, product_name=name, quantity=qty,
                      total_price=total, customer_name="budi", order_id=f"O-{code}",
                      source_platform=platform)


# ---------------------------------------------------------------------------
# Matching (pure)
# ---------------------------------------------------------------------------

def test_partition_is_a_disjoint_cover():
    scans = [SimpleNamespace(code="A"), SimpleNamespace(code=" B "), SimpleNamespace(code="C")]
    items = [_item("A"), _item("A "), _item("B"), _item("D")]

    result = match_receipts(scans, items)

    assert [(s.code, len(group)) for s, group in result.matched] == [("A", 2), (" B ", 1)]
    assert [s.code for s in result.scanned_not_in_export] == ["C"]
    assert [i.tracking_code for i in result.export_not_scanned] == ["D"]

    matched_items = sum(len(group) for _s, group in result.matched)
    assert len(result.matched) + len(result.scanned_not_in_export) == len(scans)
    assert matched_items + len(result.export_not_scanned) == len(items)


def test_second_scan_with_same_code_is_unmatched():
    scans = [SimpleNamespace(code="A"), SimpleNamespace(code="A")]
    result = match_receipts(scans, [_item("A")])
    assert len(result.matched) == 1
    assert len(result.scanned_not_in_export) == 1


def test_report_frame():
    scans = [SimpleNamespace(code="A", platform=Platform.SHOPEE, sub_channel="", stage=ReceiptStage.STAGE2_VERIFIED),
             SimpleNamespace(code="C", platform=Platform.SHOPEE, sub_channel="", stage=ReceiptStage.STAGE1_SCANNED)]
    df = match_receipts(scans, [_item("A", qty=2, total=1000.0), _item("D")]).to_frame()

    assert list(df["result"]) == ["matched", "scanned_not_in_export", "export_not_scanned"]
    assert df.loc[0, "quantity"] == 2
    assert df.loc[0, "stage"] == "STAGE2_VERIFIED"
    assert df.loc[2, "platform"] == "SHOPEE"


# ---------------------------------------------------------------------------
# Split (pure)
# ---------------------------------------------------------------------------

def test_split_row_shares_total():
    parent = Stage3Row(tracking_code="S1", sku="BUNDLE", part_number="BUNDLE", quantity=2,
                       total_price=90000.0, status=STATUS_READY)
    children = split_row(parent, 3)

    assert len(children) == 3
    assert sum(c.total_price for c in children) == pytest.approx(90000.0)
    for c in children:
        assert c.total_price == pytest.approx(30000.0)
        assert c.part_number == ""
        assert c.quantity == 2
        assert c.status == STATUS_NEEDS_INPUT
        assert c.is_split and c.split_count == 3
        assert c.split_group == parent.row_id
    assert len({c.row_id for c in children}) == 3


def test_split_needs_two_parts():
    with pytest.raises(ValidationError):
        split_row(Stage3Row(tracking_code="S1"), 1)


# ---------------------------------------------------------------------------
# Stage-3 rows and commit
# ---------------------------------------------------------------------------

async def _scan(svc: ResiStageService, code: str, verify: bool = True):
    result = await svc.scan_stage1(code, Platform.SHOPEE, "MJM", "mjm", "andi")
    if verify:
        await svc.verify_stage2(code, "packer", "mjm")
    return result


@pytest.mark.asyncio
async def test_row_statuses(session, add_stock, add_alias):
    await add_stock("P-100", 5)
    await add_stock("P-200", 0)
    await add_alias("P-200", "Oli Mesin Super")
    svc = ResiStageService(session)
    await _scan(svc, "A")
    await _scan(svc, "B", verify=False)
    await _scan(svc, "D")
    await _scan(svc, "E")

    rows = await Stage3Builder(session).build_rows([
        _item("A", sku="P-100", name="Kampas Rem", qty=2),
        _item("B", sku="P-100"),
        _item("C", sku="P-100"),
        _item("D", sku="UNKNOWN", name="Barang Misterius"),
        _item("E", name="Oli Mesin Super"),
    ], "mjm")
    status = {r.tracking_code: r.status for r in rows}

    assert status == {
        "A": STATUS_READY,
        "B": STATUS_PENDING_S2,
        "C": STATUS_NOT_SCANNED,
        "D": STATUS_NEEDS_INPUT,
        "E": STATUS_LOW_STOCK,
    }
    by_code = {r.tracking_code: r for r in rows}
    assert by_code["A"].is_db_verified and by_code["A"].is_stock_valid
    assert by_code["A"].stock_qty == 5
    assert by_code["E"].part_number == "P-200"


@pytest.mark.asyncio
async def test_substitute_sku_resolves_to_main_part(session, add_stock):
    await add_stock("P-100", 3)
    await AliasService(session).add_substitution("P-100", "P-100-OLD")
    svc = ResiStageService(session)
    await _scan(svc, "A")
    await _scan(svc, "B")

    rows = await Stage3Builder(session).build_rows(
        [_item("A", sku="P-100-OLD", qty=1), _item("B", sku="P-100", qty=2)], "mjm",
    )
    assert [(r.tracking_code, r.part_number, r.status) for r in rows] == [
        ("A", "P-100", STATUS_READY), ("B", "P-100", STATUS_READY),
    ]

    rows = await Stage3Builder(session).build_rows([_item("A", sku="P-100-OLD", qty=4)], "mjm")
    assert rows[0].status == STATUS_LOW_STOCK


@pytest.mark.asyncio
async def test_batch_demand_counts_against_stock(session, add_stock):
    await add_stock("P-100", 3)
    svc = ResiStageService(session)
    await _scan(svc, "A")
    await _scan(svc, "B")

    rows = await Stage3Builder(session).build_rows(
        [_item("A", sku="P-100", qty=2), _item("B", sku="P-100", qty=2)], "mjm",
    )
    assert {r.status for r in rows} == {STATUS_LOW_STOCK}


@pytest.mark.asyncio
async def test_manual_part_after_split_becomes_ready(session, add_stock):
    await add_stock("P-1", 5)
    await add_stock("P-2", 5)
    svc = ResiStageService(session)
    await _scan(svc, "SET")

    builder = Stage3Builder(session)
    [parent] = await builder.build_rows([_item("SET", sku="SET-A", name="Paket Servis", total=100.0)], "mjm")
    assert parent.status == STATUS_NEEDS_INPUT

    children = split_row(parent, 2)
    children[0].part_number, children[0].manual_input = "P-1", True
    rows = await builder.refresh(children, "mjm")
    assert [r.status for r in rows] == [STATUS_READY, STATUS_NEEDS_INPUT]

    rows[1].part_number = "P-2"
    rows = await builder.refresh(rows, "mjm")
    assert [r.status for r in rows] == [STATUS_READY, STATUS_READY]

    bulk = await svc.commit_stage3(rows, "mjm", "admin")
    assert bulk.success_count == 1
    items = (await session.execute(select(ReceiptItem).order_by(ReceiptItem.part_number))).scalars().all()
    assert [(i.part_number, i.total_price, i.is_split_item, i.split_count) for i in items] == [
        ("P-1", 50.0, True, 2), ("P-2", 50.0, True, 2),
    ]


@pytest.mark.asyncio
async def test_commit_posts_ledger_and_advances(session, add_stock, stock_qty):
    await add_stock("P-100", 5)
    svc = ResiStageService(session)
    scan = await _scan(svc, "A")
    await _scan(svc, "B", verify=False)

    rows = await Stage3Builder(session).build_rows([
        _item("A", sku="P-100", name="Kampas Rem", qty=2, total=150000.0),
        _item("B", sku="P-100"),
    ], "mjm")
    bulk = await svc.commit_stage3(rows, "mjm", "admin")
    await session.commit()

    outcomes = {r.code: r.outcome for r in bulk.results}
    assert outcomes == {"A": Outcome.success, "B": Outcome.not_ready}
    assert await stock_qty("P-100") == 3

    rec = await svc.get_receipt(scan.receipt_id, "mjm")
    assert rec.stage == ReceiptStage.STAGE3_PROCESSED
    assert rec.customer == "budi"
    assert rec.order_id == "O-A"

    sold = (await session.execute(select(SoldItem))).scalars().all()
    assert len(sold) == 1
    assert sold[0].resi == "A"
    assert sold[0].quantity == 2
    assert sold[0].unit_price == pytest.approx(75000.0)
    assert sold[0].stock_after == 3
    assert sold[0].created_by == "admin"

    aliases = (await session.execute(select(ProductAlias))).scalars().all()
    assert [(a.part_number, a.alias_name, a.source) for a in aliases] == [("P-100", "Kampas Rem", "SHOPEE")]

    # a second commit of the same rows posts nothing
    again = await svc.commit_stage3(rows, "mjm", "admin")
    assert {r.code: r.outcome for r in again.results}["A"] == Outcome.ledger_committed
    assert await stock_qty("P-100") == 3

    with pytest.raises(LedgerCommittedError):
        await svc.delete_receipt(scan.receipt_id, "mjm", confirmed=True)


@pytest.mark.asyncio
async def test_commit_rolls_back_receipt_on_short_stock(session, add_stock, stock_qty):
    await add_stock("P-100", 5)
    await add_stock("P-300", 1)
    svc = ResiStageService(session)
    scan = await _scan(svc, "A")

    rows = [
        Stage3Row(tracking_code="A", part_number="P-100", quantity=1, status=STATUS_READY),
        Stage3Row(tracking_code="A", part_number="P-300", quantity=4, status=STATUS_READY),
    ]
    bulk = await svc.commit_stage3(rows, "mjm", "admin")
    await session.commit()

    assert bulk.results[0].outcome == Outcome.insufficient_stock
    assert await stock_qty("P-100") == 5
    assert await stock_qty("P-300") == 1
    rec = await svc.get_receipt(scan.receipt_id, "mjm")
    assert rec.stage == ReceiptStage.STAGE2_VERIFIED


@pytest.mark.asyncio
async def test_rows_for_pending(session):
    svc = ResiStageService(session)
    await _scan(svc, "P1")
    await _scan(svc, "P2", verify=False)

    rows = await Stage3Builder(session).rows_for_pending("mjm")
    assert [(r.tracking_code, r.status) for r in rows] == [("P1", STATUS_NEEDS_INPUT)]


@pytest.mark.asyncio
async def test_processed_codes_are_left_out(session, add_stock):
    await add_stock("P-100", 5)
    svc = ResiStageService(session)
    await _scan(svc, "A")
    builder = Stage3Builder(session)
    rows = await builder.build_rows([_item("A", sku="P-100")], "mjm")
    await svc.commit_stage3(rows, "mjm", "admin")

    assert await builder.build_rows([_item("A", sku="P-100")], "mjm") == []
