"""
PSGC reference loader.

Reads geographic units from a CSV export with the columns
``code,name,level,parent_code`` and orders them parents first so they can be
written to a store that enforces foreign keys. The whole file is validated as
a catalog before anything is written.
"""

from __future__ import annotations

import csv
from pathlib import Path

from rbi_registry.errors import CatalogIntegrityError
from rbi_registry.geography.catalog import GeographicCatalog
from rbi_registry.schema import GeographicUnit, GeoLevel

REQUIRED_COLUMNS = ("code", "level")

_LEVEL_ALIASES = {
    "reg": GeoLevel.REGION,
    "prov": GeoLevel.PROVINCE,
    "city": GeoLevel.CITY,
    "mun": GeoLevel.CITY,
    "municipality": GeoLevel.CITY,
    "submun": GeoLevel.CITY,
    "bgy": GeoLevel.BARANGAY,
}


def parse_level(raw: str) -> GeoLevel:
    value = raw.strip().lower()
    if value in _LEVEL_ALIASES:
        return _LEVEL_ALIASES[value]
    try:
        return GeoLevel(value)
    except ValueError:
        raise CatalogIntegrityError(f"Unknown geographic level: {raw!r}") from None


def read_units_csv(path: str | Path) -> list[GeographicUnit]:
    """
    Parse and validate a PSGC CSV file.

    Returns:
        Units ordered region → province → city → barangay.

    Raises:
        CatalogIntegrityError: Missing columns, unknown levels or a broken tree.
    """
    with open(path, newline="", encoding="utf-8") as handle:
        reader = csv.DictReader(handle)
        columns = reader.fieldnames or []
        missing = [c for c in REQUIRED_COLUMNS if c not in columns]
        if missing:
            raise CatalogIntegrityError(
                f"PSGC file {path} is missing columns: {', '.join(missing)}"
            )
        units = [
            GeographicUnit(
                code=row["code"].strip(),
                name=(row.get("name") or "").strip(),
                level=parse_level(row["level"]),
                parent_code=(row.get("parent_code") or "").strip() or None,
            )
            for row in reader
        ]

    # Validates the whole tree before the caller writes anything
    GeographicCatalog(units)
    return sorted(units, key=lambda u: (u.level.depth, u.code))
