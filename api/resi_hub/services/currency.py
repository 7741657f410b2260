# resi_hub/services/currency.py
"""
Currency normalisation for marketplace amounts.

Marketplace exports mix currencies ("RM 12.50", "₱ 300", "S$ 4", "$ 2.10",
plain "150000"). Everything is converted to the base currency with a fixed
rate table; rates are deployment constants, callers treat results as
approximate.
"""
from __future__ import annotations
import re
from typing import Dict, Mapping, Optional, Tuple

from resi_hub.settings import settings

# (currency, markers) in detection priority; "S$" must be checked before "$"
CURRENCY_MARKERS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("MYR", ("MYR", "RM")),
    ("PHP", ("PHP", "₱")),
    ("SGD", ("SGD", "S$")),
    ("USD", ("USD", "$")),
)

_NON_NUMERIC = re.compile(r"[^0-9.]")
# 1.250.000 style thousands grouping, only meaningful for the base currency
_DOT_GROUPED = re.compile(r"^\d{1,3}(\.\d{3})+$")


def detect_currency(raw: str, base_currency: Optional[str] = None) -> str:
    """Return the currency code for a raw amount string."""
    base = (base_currency or settings.BASE_CURRENCY).upper()
    text = (raw or "").upper()
    for code, markers in CURRENCY_MARKERS:
        if any(m in text for m in markers):
            return code
    return base


def _rates(rates: Optional[Mapping[str, float]]) -> Dict[str, float]:
    table = dict(settings.EXCHANGE_RATES)
    if rates:
        table.update({k.upper(): float(v) for k, v in rates.items()})
    return table


def parse_amount(
    raw: Optional[str],
    rates: Optional[Mapping[str, float]] = None,
) -> Tuple[float, str, float]:
    """
    Split a raw amount into (magnitude, currency, rate).

    Never raises: unparseable input gives (0.0, base currency, 1.0).
    """
    base = settings.BASE_CURRENCY.upper()
    text = str(raw or "").strip()
    if not text:
        return 0.0, base, 1.0

    currency = detect_currency(text, base)
    cleaned = text.replace(",", "")
    digits = _NON_NUMERIC.sub("", cleaned)

    if currency == base and _DOT_GROUPED.match(digits):
        digits = digits.replace(".", "")

    try:
        amount = float(digits)
    except ValueError:
        return 0.0, base, 1.0

    rate = _rates(rates).get(currency)
    if rate is None:
        return 0.0, base, 1.0
    return amount, currency, rate


def normalize_amount(raw: Optional[str], rates: Optional[Mapping[str, float]] = None) -> float:
    """Convert a raw marketplace amount to the base currency."""
    amount, _currency, rate = parse_amount(raw, rates)
    return amount * rate
