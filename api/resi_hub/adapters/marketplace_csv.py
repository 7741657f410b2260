# -*- coding: utf-8 -*-
"""
Marketplace export CSV -> normalised export items.

Each marketplace is one ``CsvFormat`` variant: a header marker that locates
the header row (exports carry report metadata above it), a column map keyed
by logical field, the order-status vocabulary that marks a row as not
fulfillable, and a placeholder for blank product names.

Column lookup prefers an exact (case-insensitive) header match and falls back
to substring containment, so small renames in the seller back-ends ("Jumlah"
vs "Jumlah Produk") keep parsing.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from pydantic import BaseModel

from resi_hub.db_models import Platform
from resi_hub.services.currency import normalize_amount

logger = logging.getLogger(__name__)


class ExportItem(BaseModel):
    tracking_code: str
    order_id: str = ""
    order_status: str = ""
    shipping_option: str = ""
    customer_name: str = ""
    sku: str = ""
    product_name: str = ""
    variation: str = ""
    quantity: int = 1
    total_price: float = 0.0
    source_platform: Platform


@dataclass(frozen=True)
class CsvFormat:
    key: str
    platform: Platform
    header_marker: str
    columns: Dict[str, Tuple[str, ...]]
    cancel_vocabulary: Tuple[str, ...]
    placeholder_name: str
    required: Tuple[str, ...] = ("tracking_code",)


# ----------------- helpers -----------------

def split_csv_line(line: str) -> List[str]:
    """
    Split one CSV line on commas outside double quotes.

    A quote toggles the inside-quotes flag and is dropped; doubled quotes
    are not treated as an escape.
    """
    out: List[str] = []
    current: List[str] = []
    in_quotes = False
    for ch in line:
        if ch == '"':
            in_quotes = not in_quotes
        elif ch == "," and not in_quotes:
            out.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    out.append("".join(current).strip())
    return out


def _norm(s: str) -> str:
    return str(s or "").replace("\u00A0", " ").replace("\ufeff", "").strip().lower()


def _lines(text: str) -> List[str]:
    return [ln for ln in (text or "").splitlines() if ln.strip()]


def find_header_index(lines: Sequence[str], marker: str) -> int:
    """Index of the first line whose cells contain ``marker``; -1 if none."""
    m = _norm(marker)
    for i, line in enumerate(lines):
        if any(m in _norm(cell) for cell in split_csv_line(line)):
            return i
    return -1


def build_column_index(headers: Sequence[str], columns: Dict[str, Tuple[str, ...]]) -> Dict[str, int]:
    """Map logical field -> column position (exact match first, then containment)."""
    normed = [_norm(h) for h in headers]
    index: Dict[str, int] = {}
    for name, candidates in columns.items():
        pos = None
        for cand in candidates:
            c = _norm(cand)
            if c in normed:
                pos = normed.index(c)
                break
        if pos is None:
            for cand in candidates:
                c = _norm(cand)
                pos = next((i for i, h in enumerate(normed) if c in h), None)
                if pos is not None:
                    break
        if pos is not None:
            index[name] = pos
    return index


def _cell(row: Sequence[str], idx: Dict[str, int], name: str) -> str:
    j = idx.get(name)
    if j is None or j >= len(row):
        return ""
    return (row[j] or "").strip()


def _to_quantity(raw: str) -> int:
    """Whole units from "2", "2.00" or "1,000"; anything unusable counts as one."""
    try:
        qty = int(float((raw or "").replace(",", "").strip()))
    except (ValueError, OverflowError):
        return 1
    return qty if qty > 0 else 1


def is_cancelled(status: str, vocabulary: Sequence[str]) -> bool:
    s = _norm(status)
    return bool(s) and any(word in s for word in vocabulary)


# ----------------- main -----------------

def parse_with_format(text: str, fmt: CsvFormat) -> List[ExportItem]:
    """Parse raw export text with one marketplace variant."""
    lines = _lines(text)
    header_at = find_header_index(lines, fmt.header_marker)
    if header_at < 0:
        logger.warning(f"{fmt.key}: header marker {fmt.header_marker!r} not found")
        return []

    headers = split_csv_line(lines[header_at])
    idx = build_column_index(headers, fmt.columns)
    missing = [name for name in fmt.required if name not in idx]
    if missing:
        logger.warning(f"{fmt.key}: required columns missing {missing}")
        return []

    items: List[ExportItem] = []
    dropped_short = dropped_status = dropped_blank = 0
    for line in lines[header_at + 1:]:
        row = split_csv_line(line)
        if len(row) < len(headers):
            dropped_short += 1
            continue

        status = _cell(row, idx, "order_status")
        if is_cancelled(status, fmt.cancel_vocabulary):
            dropped_status += 1
            continue

        tracking = _cell(row, idx, "tracking_code")
        # codes never contain whitespace; description rows do
        if not tracking or any(ch.isspace() for ch in tracking):
            dropped_blank += 1
            continue

        items.append(ExportItem(
            tracking_code=tracking,
            order_id=_cell(row, idx, "order_id"),
            order_status=status,
            shipping_option=_cell(row, idx, "shipping_option"),
            customer_name=_cell(row, idx, "customer_name"),
            sku=_cell(row, idx, "sku"),
            product_name=_cell(row, idx, "product_name") or fmt.placeholder_name,
            variation=_cell(row, idx, "variation"),
            quantity=_to_quantity(_cell(row, idx, "quantity")),
            total_price=normalize_amount(_cell(row, idx, "total_price")),
            source_platform=fmt.platform,
        ))

    logger.info(
        f"{fmt.key}: parsed {len(items)} rows "
        f"(short={dropped_short}, cancelled={dropped_status}, no_code={dropped_blank})"
    )
    return items


def summarize_export(items: Sequence[ExportItem]) -> Dict[str, float]:
    """Headline numbers for an uploaded export."""
    return {
        "unique_codes": len({i.tracking_code for i in items}),
        "unique_customers": len({i.customer_name for i in items if i.customer_name}),
        "total_items": len(items),
        "total_quantity": sum(i.quantity for i in items),
        "total_value": sum(i.total_price for i in items),
    }


def group_by_tracking_code(items: Sequence[ExportItem]) -> Dict[str, List[ExportItem]]:
    grouped: Dict[str, List[ExportItem]] = {}
    for item in items:
        grouped.setdefault(item.tracking_code.strip(), []).append(item)
    return grouped

