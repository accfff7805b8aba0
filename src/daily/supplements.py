"""Tracked supplement kinds.

Each kind owns exactly one log table with a ``(user_id, date, amount)``
shape.  Table names are fixed here and never taken from request input, so
no caller can point a query at an arbitrary table.
"""

from __future__ import annotations

from enum import Enum


class SupplementKind(str, Enum):
    """Supplements tracked once per day, keyed by the app's setting key."""

    creatine = "creatine"
    fish_oil = "fishOil"
    d3 = "d3"
    k2 = "k2"
    vitamin_c = "vitaminC"
    vitamin_a = "vitaminA"
    vitamin_e = "vitaminE"
    vitamin_b12 = "vitaminB12"
    vitamin_b_complex = "vitaminBComplex"
    folate = "folate"
    biotin = "biotin"
    zinc = "zinc"
    magnesium = "magnesium"
    melatonin = "melatonin"
    caffeine = "caffeine"

    @property
    def table(self) -> str:
        return _TABLES[self]

    @property
    def unit(self) -> str:
        return _UNITS[self]

    @property
    def summary_key(self) -> str:
        """Snake-case key used inside the stored summary document."""
        return self.name


_TABLES: dict[SupplementKind, str] = {
    SupplementKind.creatine: "creatine_logs",
    SupplementKind.fish_oil: "fish_oil_logs",
    SupplementKind.d3: "d3_logs",
    SupplementKind.k2: "k2_logs",
    SupplementKind.vitamin_c: "vitamin_c_logs",
    SupplementKind.vitamin_a: "vitamin_a_logs",
    SupplementKind.vitamin_e: "vitamin_e_logs",
    SupplementKind.vitamin_b12: "vitamin_b12_logs",
    SupplementKind.vitamin_b_complex: "vitamin_b_complex_logs",
    SupplementKind.folate: "folate_logs",
    SupplementKind.biotin: "biotin_logs",
    SupplementKind.zinc: "zinc_logs",
    SupplementKind.magnesium: "magnesium_logs",
    SupplementKind.melatonin: "melatonin_logs",
    SupplementKind.caffeine: "caffeine_logs",
}

_UNITS: dict[SupplementKind, str] = {
    SupplementKind.creatine: "g",
    SupplementKind.fish_oil: "mg",
    SupplementKind.d3: "IU",
    SupplementKind.k2: "mcg",
    SupplementKind.vitamin_c: "mg",
    SupplementKind.vitamin_a: "IU",
    SupplementKind.vitamin_e: "IU",
    SupplementKind.vitamin_b12: "mcg",
    SupplementKind.vitamin_b_complex: "mg",
    SupplementKind.folate: "mcg",
    SupplementKind.biotin: "mcg",
    SupplementKind.zinc: "mg",
    SupplementKind.magnesium: "mg",
    SupplementKind.melatonin: "mg",
    SupplementKind.caffeine: "mg",
}

