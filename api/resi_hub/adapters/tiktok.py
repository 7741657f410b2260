# -*- coding: utf-8 -*-
"""
TikTok Shop seller-center order export (English headers).
"""
from __future__ import annotations

from typing import List

from resi_hub.adapters.marketplace_csv import CsvFormat, ExportItem, parse_with_format
from resi_hub.db_models import Platform

TIKTOK_FORMAT = CsvFormat(
    key="tiktok",
    platform=Platform.TIKTOK,
    header_marker="Tracking ID",
    columns={
        "tracking_code": ("Tracking ID",),
        "order_id": ("Order ID",),
        "order_status": ("Order Status",),
        "shipping_option": ("Delivery Option", "Shipping Provider Name"),
        "customer_name": ("Buyer Username", "Recipient"),
        "sku": ("Seller SKU", "SKU ID"),
        "product_name": ("Product Name",),
        "variation": ("Variation",),
        "quantity": ("Quantity",),
        "total_price": ("SKU Subtotal After Discount", "Order Amount"),
    },
    cancel_vocabulary=("unpaid", "cancelled", "batal", "belum bayar"),
    placeholder_name="Produk TikTok",
)


def parse_tiktok_export(text: str) -> List[ExportItem]:
    return parse_with_format(text, TIKTOK_FORMAT)
