# tests/test_duplicates.py
from __future__ import annotations

from resi_hub.services.duplicates import flag_duplicates


def test_flags_only_later_occurrences():
    codes = ["A1", " a1 ", "B2", "", "  ", "b2", "A1"]
    assert flag_duplicates(codes) == [False, True, False, False, False, True, True]


def test_same_length_and_order():
    codes = ["X", "Y", "Z"]
    flags = flag_duplicates(codes)
    assert len(flags) == len(codes)
    assert not any(flags)


def test_recomputed_after_edit():
    codes = ["X", "X"]
    assert flag_duplicates(codes) == [False, True]
    # removing the first occurrence clears the flag on the second
    assert flag_duplicates(codes[1:]) == [False]


def test_empty_list():
    assert flag_duplicates([]) == []
