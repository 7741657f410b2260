# resi_hub/adapters/__init__.py
"""
Marketplace export registry.

Adding a marketplace means adding one ``CsvFormat`` variant module and one
entry in ``FORMATS``.
"""
from __future__ import annotations
import logging
from typing import Dict, List, Tuple

from resi_hub.adapters.marketplace_csv import (
    CsvFormat, ExportItem, find_header_index, parse_with_format, _lines,
)
from resi_hub.adapters.shopee import SHOPEE_FORMAT
from resi_hub.adapters.tiktok import TIKTOK_FORMAT
from resi_hub.errors import UnknownExportFormat

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"

FORMATS: Dict[str, CsvFormat] = {
    SHOPEE_FORMAT.key: SHOPEE_FORMAT,
    TIKTOK_FORMAT.key: TIKTOK_FORMAT,
}


def decode_export(raw: bytes) -> str:
    """UTF-8 with an optional BOM."""
    return raw.decode("utf-8-sig")


def detect_csv_platform(text: str) -> str:
    """Return the registry key whose header marker appears in ``text``, else ``unknown``."""
    lines = _lines(text)
    for key, fmt in FORMATS.items():
        if find_header_index(lines, fmt.header_marker) >= 0:
            return key
    return UNKNOWN


def parse_marketplace_export(text: str) -> Tuple[str, List[ExportItem]]:
    """
    Detect the marketplace and parse the export.

    Raises:
        UnknownExportFormat: no registered header marker found.
    """
    key = detect_csv_platform(text)
    if key == UNKNOWN:
        logger.warning("Export rejected: no known header marker")
        raise UnknownExportFormat(
            "Unrecognised export: expected a Shopee ('No. Resi') or TikTok ('Tracking ID') header"
        )
    return key, parse_with_format(text, FORMATS[key])
