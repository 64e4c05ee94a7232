"""
Geographic Hierarchy Catalog — in-memory PSGC tree.

The catalog is static reference data: region → province → city/municipality
→ barangay. It changes only through out-of-band administrative loads, so it is
loaded once, validated, and shared process-wide. The access policy walks it on
every data-access request; no lookup here touches the store.

Ancestry is resolved strictly through ``parent_code`` links. Codes are never
sliced into prefixes: a unit's parent is whatever the catalog says it is.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable

from rbi_registry.errors import CatalogIntegrityError, InvalidGeoCodeError
from rbi_registry.schema import GeographicUnit, GeoLevel

logger = logging.getLogger(__name__)


class GeographicCatalog:
    """
    Immutable, validated view of the geographic hierarchy.

    Construction checks the tree invariants: unique codes, regions without
    parents, every other unit's parent present and exactly one level up.
    Cycles cannot survive the one-level-up rule, and depth is bounded at 4.
    """

    def __init__(self, units: Iterable[GeographicUnit]) -> None:
        self._units: dict[str, GeographicUnit] = {}
        self._children: dict[str, list[str]] = {}

        for unit in units:
            if unit.code in self._units:
                raise CatalogIntegrityError(f"Duplicate geographic code: {unit.code}")
            self._units[unit.code] = unit

        for unit in self._units.values():
            self._check_parent(unit)
            if unit.parent_code is not None:
                self._children.setdefault(unit.parent_code, []).append(unit.code)

        for codes in self._children.values():
            codes.sort()

    def _check_parent(self, unit: GeographicUnit) -> None:
        expected = unit.level.parent_level
        if expected is None:
            if unit.parent_code is not None:
                raise CatalogIntegrityError(
                    f"Region {unit.code} must not have a parent (got {unit.parent_code})"
                )
            return

        if unit.parent_code is None:
            raise CatalogIntegrityError(f"{unit.level.value} {unit.code} has no parent")
        parent = self._units.get(unit.parent_code)
        if parent is None:
            raise CatalogIntegrityError(
                f"{unit.level.value} {unit.code} references missing parent {unit.parent_code}"
            )
        if parent.level is not expected:
            raise CatalogIntegrityError(
                f"{unit.level.value} {unit.code} has parent {parent.code} at level "
                f"{parent.level.value}, expected {expected.value}"
            )

    def __len__(self) -> int:
        return len(self._units)

    def __contains__(self, code: object) -> bool:
        return code in self._units

    def __iter__(self):
        return iter(self._units.values())

    def get(self, code: str) -> GeographicUnit | None:
        return self._units.get(code)

    def require(self, code: str, level: GeoLevel | None = None) -> GeographicUnit:
        """
        Resolve a code, optionally insisting on its level.

        Raises:
            InvalidGeoCodeError: Unknown code, or a unit at a different level.
        """
        unit = self._units.get(code)
        if unit is None:
            raise InvalidGeoCodeError(f"Unknown geographic code: {code}", code=code)
        if level is not None and unit.level is not level:
            raise InvalidGeoCodeError(
                f"{code} is a {unit.level.value}, expected a {level.value}",
                code=code,
            )
        return unit

    def children(self, code: str) -> list[GeographicUnit]:
        return [self._units[c] for c in self._children.get(code, ())]

    def ancestors(self, code: str) -> list[GeographicUnit]:
        """Units above ``code``, nearest first. Empty for regions and unknown codes."""
        result = []
        unit = self._units.get(code)
        while unit is not None and unit.parent_code is not None:
            unit = self._units[unit.parent_code]
            result.append(unit)
        return result

    def is_within(self, code: str, ancestor_code: str) -> bool:
        """True when ``code`` equals ``ancestor_code`` or descends from it."""
        if code not in self._units or ancestor_code not in self._units:
            return False
        if code == ancestor_code:
            return True
        return any(unit.code == ancestor_code for unit in self.ancestors(code))

    def descendants(self, code: str, level: GeoLevel | None = None) -> list[GeographicUnit]:
        """All units below ``code`` (depth first), optionally filtered by level."""
        result = []
        stack = list(reversed(self._children.get(code, ())))
        while stack:
            unit = self._units[stack.pop()]
            if level is None or unit.level is level:
                result.append(unit)
            stack.extend(reversed(self._children.get(unit.code, ())))
        return result

    def barangays(self) -> list[GeographicUnit]:
        return sorted(
            (u for u in self._units.values() if u.level is GeoLevel.BARANGAY),
            key=lambda u: u.code,
        )

    def derive_codes(self, barangay_code: str) -> dict[str, str]:
        """
        Region, province and city codes above a barangay.

        Raises:
            InvalidGeoCodeError: If ``barangay_code`` is not a known barangay.
        """
        self.require(barangay_code, GeoLevel.BARANGAY)
        codes = {}
        for unit in self.ancestors(barangay_code):
            if unit.level is GeoLevel.CITY:
                codes["city_municipality_code"] = unit.code
            elif unit.level is GeoLevel.PROVINCE:
                codes["province_code"] = unit.code
            elif unit.level is GeoLevel.REGION:
                codes["region_code"] = unit.code
        return codes


class CatalogCache:
    """
    Process-wide holder for the current ``GeographicCatalog``.

    The loader runs without the lock held; the lock only guards swapping the
    cached reference. Two threads racing on an expired entry may both load,
    and the later swap wins, which is harmless for read-only data.
    """

    def __init__(
        self,
        loader: Callable[[], Iterable[GeographicUnit]],
        ttl_seconds: float | None = None,
    ) -> None:
        self._loader = loader
        self._ttl = ttl_seconds
        self._lock = threading.Lock()
        self._catalog: GeographicCatalog | None = None
        self._loaded_at = 0.0

    def get(self) -> GeographicCatalog:
        with self._lock:
            catalog, loaded_at = self._catalog, self._loaded_at
        if catalog is not None and not self._expired(loaded_at):
            return catalog
        return self.reload()

    def reload(self) -> GeographicCatalog:
        catalog = GeographicCatalog(self._loader())
        with self._lock:
            self._catalog = catalog
            self._loaded_at = time.monotonic()
        logger.info("Geographic catalog loaded: %d units", len(catalog))
        return catalog

    def invalidate(self) -> None:
        with self._lock:
            self._catalog = None

    def _expired(self, loaded_at: float) -> bool:
        if self._ttl is None:
            return False
        return time.monotonic() - loaded_at > self._ttl
