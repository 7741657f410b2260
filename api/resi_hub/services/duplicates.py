# resi_hub/services/duplicates.py
from __future__ import annotations
from typing import Iterable, List


def dedupe_key(code: str) -> str:
    return (code or "").strip().casefold()


def flag_duplicates(codes: Iterable[str]) -> List[bool]:
    """
    One flag per input code, same order.

    A code is flagged when its trimmed, case-folded form was already seen
    earlier in the list. First occurrences and blank codes are never flagged.
    Recompute from scratch after every edit of the list.
    """
    seen = set()
    flags: List[bool] = []
    for code in codes:
        key = dedupe_key(code)
        if not key:
            flags.append(False)
            continue
        flags.append(key in seen)
        seen.add(key)
    return flags
