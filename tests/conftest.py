"""
Pytest configuration and fixtures.

Stores are file-backed SQLite databases under ``tmp_path`` so that several
threads can open their own connections for the concurrency tests.
"""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from rbi_registry.geography.catalog import CatalogCache, GeographicCatalog
from rbi_registry.registry import CivilRegistry
from rbi_registry.schema import (
    DEFAULT_ROLES,
    GeographicUnit,
    GeoLevel,
    Principal,
    RoleName,
)
from rbi_registry.store.service import RegistryStore

# The barangay used throughout the acceptance scenarios
BARANGAY = "042114014"


def _unit(code, name, level, parent=None):
    return GeographicUnit(code=code, name=name, level=level, parent_code=parent)


SAMPLE_UNITS = [
    _unit("04", "Region IV-A (CALABARZON)", GeoLevel.REGION),
    _unit("13", "National Capital Region", GeoLevel.REGION),
    _unit("0421", "Cavite", GeoLevel.PROVINCE, "04"),
    _unit("1374", "NCR, Second District", GeoLevel.PROVINCE, "13"),
    _unit("042114", "City of Imus", GeoLevel.CITY, "0421"),
    _unit("042103", "Bacoor City", GeoLevel.CITY, "0421"),
    _unit("137404", "Quezon City", GeoLevel.CITY, "1374"),
    _unit("042114014", "Bucandala I", GeoLevel.BARANGAY, "042114"),
    _unit("042114015", "Bucandala II", GeoLevel.BARANGAY, "042114"),
    _unit("042103001", "Alima", GeoLevel.BARANGAY, "042103"),
    _unit("137404001", "Alicia", GeoLevel.BARANGAY, "137404"),
]


@pytest.fixture
def sample_units():
    return list(SAMPLE_UNITS)


@pytest.fixture
def catalog(sample_units):
    return GeographicCatalog(sample_units)


@pytest.fixture
def store(tmp_path, sample_units):
    """Initialized store with the role catalog and sample geography loaded."""
    store = RegistryStore(f"sqlite:///{tmp_path / 'rbi.db'}")
    store.initialize()
    store.upsert_geographic_units(sample_units)
    yield store
    store.dispose()


@pytest.fixture
def catalogs(store):
    return CatalogCache(store.load_geographic_units)


@pytest.fixture
def registry(store, catalogs):
    return CivilRegistry(store, catalogs)


@pytest.fixture
def super_admin(registry):
    return registry.assignment.provision_principal("root|admin", RoleName.SUPER_ADMIN)


def make_principal(
    role: RoleName,
    scope_code: str | None = None,
    is_active: bool = True,
) -> Principal:
    """Build an unpersisted principal for pure policy tests."""
    scope_level = DEFAULT_ROLES[role].scope_level
    return Principal(
        id=uuid4(),
        external_identity_id=f"test|{uuid4()}",
        role_id=uuid4(),
        role=role,
        scope_code=scope_code,
        barangay_code=scope_code if scope_level is GeoLevel.BARANGAY else None,
        is_active=is_active,
        created_at=datetime.now(timezone.utc),
    )


@pytest.fixture
def principal_factory():
    return make_principal
