"""Header pattern library for column detection.

Plain data: field name -> ordered tuple of compiled header patterns. The
scorer treats every entry the same way, so extending detection to a new
spreadsheet dialect means adding a pattern here, not touching the scorer.
Patterns are matched against the trimmed header text.
"""

from __future__ import annotations

import re
from typing import Dict, List, Pattern, Tuple

# Field order matters: it is the order fields are reported in.
FIELDS: Tuple[str, ...] = ("lp", "item_id", "name", "quantity", "unit")
REQUIRED_FIELDS: Tuple[str, ...] = ("name", "quantity", "unit")
OPTIONAL_FIELDS: Tuple[str, ...] = ("lp", "item_id")

# Wire names used in the JSON form of a mapping.
WIRE_NAMES: Dict[str, str] = {
    "lp": "lp",
    "item_id": "itemId",
    "name": "name",
    "quantity": "quantity",
    "unit": "unit",
}

# A header equal to one of these (case-insensitive) earns the exact-name bonus.
CANONICAL_NAMES: Dict[str, str] = {
    "lp": "lp",
    "item_id": "itemid",
    "name": "name",
    "quantity": "quantity",
    "unit": "unit",
}

_RAW_PATTERNS: Dict[str, List[str]] = {
    "lp": [
        r"^l\.?\s*p\.?$",
        r"^(numer|nr)?\s*(porządkowy|porzadkowy)$",
        r"^(line|row)?\s*(number|nr|num)$",
        r"^pozycja$",
        r"^poz\.?$",
        r"^position$",
        r"^no\.?$",
        r"^#$",
        r"^l\.p\.\s*№$",
    ],
    "item_id": [
        r"^(nr|numer)?\s*(indeks|index)$",
        r"^(kod|code)\s*(produktu|product|towaru|item)?$",
        r"^(id|identyfikator)$",
        r"^(symbol|sku|part\s*number?)$",
        r"^(item\s*)?(id|code|number)$",
        r"^material$",
        r"^nr\s*indeksu$",
        r"^item\s*code$",
        r"^code$",
        r"^kod-produktu$",
    ],
    "name": [
        r"^nazwa\s*(towaru|produktu|item)?$",
        r"^(produkt|product)\s*(name)?$",
        r"^(item|towar|товар|goods)\s*(name|nazwa)?$",
        r"^(description|opis)$",
        r"^nazwa$",
        r"^name$",
        r"^product\s*name$",
        r"^item\s*name$",
        r"^nazwa\s*\(pl\)$",
    ],
    "quantity": [
        r"^(ilość|ilosc|qty|quantity)$",
        r"^qty\.$",
        r"^(liczba|amount|count)$",
        r"^(stan|stock|inventory)$",
        r"^(wartość|value|val)$",
        r"^quantity$",
        r"^amount$",
        r"^ilość\s*/\s*szt\.?$",
    ],
    "unit": [
        r"^(jmz|jednostka|unit)$",
        r"^(miara|measure|measurement)$",
        r"^(um|u\.m\.?)$",
        r"^j\.?\s*m\.?$",
        r"^(unit\s*of\s*measure|uom)$",
        r"^unit$",
        r"^uom$",
        r"^jednostka\s*m\.$",
    ],
}

FIELD_PATTERNS: Dict[str, Tuple[Pattern[str], ...]] = {
    field: tuple(re.compile(raw, re.IGNORECASE) for raw in _RAW_PATTERNS[field])
    for field in FIELDS
}


def matching_patterns(field: str, header: str) -> int:
    """Return how many of ``field``'s patterns match the trimmed ``header``."""

    text = header.strip()
    return sum(1 for pattern in FIELD_PATTERNS[field] if pattern.search(text))


def matching_fields(header: str) -> List[str]:
    """Return the fields (in field order) with at least one matching pattern."""

    return [field for field in FIELDS if matching_patterns(field, header) > 0]
