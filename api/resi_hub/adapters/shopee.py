# -*- coding: utf-8 -*-
"""
Shopee seller-centre order export (Indonesian headers).

  No. Resi            -> tracking_code
  No. Pesanan         -> order_id
  Status Pesanan      -> order_status
  Opsi Pengiriman     -> shipping_option
  Username (Pembeli)  -> customer_name
  Nomor Referensi SKU -> sku
  Nama Produk         -> product_name
  Jumlah              -> quantity
  Total Harga Produk  -> total_price
"""
from __future__ import annotations

from typing import List

from resi_hub.adapters.marketplace_csv import CsvFormat, ExportItem, parse_with_format
from resi_hub.db_models import Platform

SHOPEE_FORMAT = CsvFormat(
    key="shopee",
    platform=Platform.SHOPEE,
    header_marker="No. Resi",
    columns={
        "tracking_code": ("No. Resi",),
        "order_id": ("No. Pesanan",),
        "order_status": ("Status Pesanan",),
        "shipping_option": ("Opsi Pengiriman",),
        "customer_name": ("Username (Pembeli)", "Nama Penerima"),
        "sku": ("Nomor Referensi SKU", "SKU Induk"),
        "product_name": ("Nama Produk",),
        "variation": ("Nama Variasi",),
        "quantity": ("Jumlah",),
        "total_price": ("Total Harga Produk", "Harga Setelah Diskon"),
    },
    cancel_vocabulary=("batal", "belum bayar"),
    placeholder_name="Produk Shopee",
)


def parse_shopee_export(text: str) -> List[ExportItem]:
    return parse_with_format(text, SHOPEE_FORMAT)
