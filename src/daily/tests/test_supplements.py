"""Tests for the supplement kind table mapping."""

from src.daily.supplements import SupplementKind


def test_every_kind_has_a_table_and_unit():
    tables = {kind.table for kind in SupplementKind}
    assert len(tables) == len(SupplementKind)
    assert all(kind.unit for kind in SupplementKind)


def test_summary_key_is_snake_case_name():
    assert SupplementKind.fish_oil.summary_key == "fish_oil"
    assert SupplementKind("vitaminB12") is SupplementKind.vitamin_b12
