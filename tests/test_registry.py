"""
Tests for the Civil Registry facade — the interface the web layer calls.

Validates:
- Failures come back as typed Outcome values, never raised
- Access checks against stored principals
- Household creation behind the WRITE check
- Catalog reloads
"""

from __future__ import annotations

from uuid import uuid4

import pytest

from rbi_registry.config import RegistrySettings
from rbi_registry.errors import ErrorKind, InvalidInputError, TransientStoreError
from rbi_registry.geography.catalog import CatalogCache
from rbi_registry.registry import CivilRegistry
from rbi_registry.schema import (
    AccessReason,
    GeographicUnit,
    GeoLevel,
    Operation,
    RoleName,
)
from rbi_registry.store.service import RegistryStore

BARANGAY = "042114014"


class TestSignupOutcomes:
    def test_scenario_first_then_second(self, registry):
        first = registry.create_principal("auth0|first", BARANGAY)
        second = registry.create_principal("auth0|second", BARANGAY)
        assert first.ok and second.ok
        assert first.value.role is RoleName.BARANGAY_ADMIN
        assert second.value.role is RoleName.RESIDENT

    def test_duplicate_returns_existing(self, registry):
        first = registry.create_principal("auth0|first", BARANGAY)
        again = registry.create_principal("auth0|first", BARANGAY)
        assert again.error is ErrorKind.CONFLICT
        assert again.value.id == first.value.id

    def test_invalid_barangay(self, registry):
        outcome = registry.create_principal("auth0|first", "042114")
        assert outcome.error is ErrorKind.INVALID_GEO_CODE
        assert outcome.value is None

    def test_barangay_has_admin(self, registry):
        assert registry.barangay_has_admin(BARANGAY).value is False
        registry.create_principal("auth0|first", BARANGAY)
        assert registry.barangay_has_admin(BARANGAY).value is True
        assert registry.barangay_has_admin("nowhere").error is ErrorKind.INVALID_GEO_CODE


class TestCheckAccess:
    def test_operation_accepts_strings(self, registry):
        admin = registry.create_principal("auth0|first", BARANGAY).value
        grant = registry.check_access(admin.id, "write", BARANGAY)
        assert grant.allowed
        assert grant.operation is Operation.WRITE

    def test_unknown_operation_raises(self, registry):
        admin = registry.create_principal("auth0|first", BARANGAY).value
        with pytest.raises(InvalidInputError) as exc_info:
            registry.check_access(admin.id, "delete", BARANGAY)
        assert exc_info.value.kind is ErrorKind.INVALID_INPUT

    def test_unknown_principal(self, registry):
        grant = registry.check_access(uuid4(), Operation.READ, BARANGAY)
        assert not grant.allowed
        assert grant.reason is AccessReason.UNKNOWN_PRINCIPAL

    def test_other_region_denied(self, registry):
        regional = registry.assignment.provision_principal(
            "auth0|ncr", RoleName.REGION_ADMIN, "13",
        )
        grant = registry.check_access(regional.id, Operation.READ, BARANGAY)
        assert not grant.allowed
        assert grant.reason is AccessReason.OUT_OF_SCOPE
        assert registry.check_access(regional.id, Operation.READ, "137404001").allowed

    def test_deactivated_principal_denied(self, registry, super_admin):
        admin = registry.create_principal("auth0|first", BARANGAY).value
        assert registry.deactivate_principal(super_admin.id, admin.id).ok
        grant = registry.check_access(admin.id, Operation.READ, BARANGAY)
        assert grant.reason is AccessReason.PRINCIPAL_INACTIVE

    def test_accessible_barangays(self, registry, super_admin):
        admin = registry.create_principal("auth0|first", BARANGAY).value
        assert [u.code for u in registry.accessible_barangays(admin.id)] == [BARANGAY]
        assert len(registry.accessible_barangays(super_admin.id)) == 4
        assert registry.accessible_barangays(uuid4()) == []


class TestCreateHousehold:
    def test_admin_creates_in_own_barangay(self, registry):
        admin = registry.create_principal("auth0|first", BARANGAY).value
        outcome = registry.create_household(admin.id, {"street_name": "Rizal Ave."})
        assert outcome.ok
        assert outcome.value.code == "042114014-0001"
        assert outcome.value.street_name == "Rizal Ave."
        assert outcome.value.created_by == admin.id
        assert outcome.grant.reason is AccessReason.WITHIN_SCOPE

    def test_resident_creates_owned_household(self, registry):
        registry.create_principal("auth0|first", BARANGAY)
        resident = registry.create_principal("auth0|second", BARANGAY).value
        outcome = registry.create_household(resident.id)
        assert outcome.ok
        assert outcome.grant.ownership_required
        assert outcome.value.created_by == resident.id

    def test_out_of_scope_denied(self, registry):
        admin = registry.create_principal("auth0|first", BARANGAY).value
        outcome = registry.create_household(admin.id, barangay_code="042114015")
        assert outcome.error is ErrorKind.ACCESS_DENIED
        assert outcome.grant.reason is AccessReason.OUT_OF_SCOPE
        assert registry.households.list_households("042114015") == []

    def test_unknown_principal(self, registry):
        outcome = registry.create_household(uuid4())
        assert outcome.error is ErrorKind.NOT_FOUND

    def test_super_admin_needs_target(self, registry, super_admin):
        assert registry.create_household(super_admin.id).error is ErrorKind.INVALID_GEO_CODE
        outcome = registry.create_household(super_admin.id, barangay_code="137404001")
        assert outcome.ok
        assert outcome.value.code == "137404001-0001"
        assert outcome.grant.reason is AccessReason.GLOBAL_SCOPE

    def test_city_admin_must_target_a_barangay(self, registry):
        city = registry.assignment.provision_principal("auth0|imus", RoleName.CITY_ADMIN, "042114")
        outcome = registry.create_household(city.id, barangay_code="042114")
        assert outcome.error is ErrorKind.INVALID_GEO_CODE
        assert registry.create_household(city.id, barangay_code="042114015").ok


class TestAdministration:
    def test_permission_denied_outcome(self, registry):
        registry.create_principal("auth0|first", BARANGAY)
        resident = registry.create_principal("auth0|second", BARANGAY).value
        other = registry.create_principal("auth0|third", BARANGAY).value
        outcome = registry.deactivate_principal(resident.id, other.id)
        assert outcome.error is ErrorKind.PERMISSION_DENIED

    def test_assign_role_conflict_outcome(self, registry, super_admin):
        registry.create_principal("auth0|first", BARANGAY)
        resident = registry.create_principal("auth0|second", BARANGAY).value
        outcome = registry.assign_role(super_admin.id, resident.id, "barangay_admin")
        assert outcome.error is ErrorKind.CONFLICT

    def test_assign_role(self, registry, super_admin):
        admin = registry.create_principal("auth0|first", BARANGAY).value
        outcome = registry.assign_role(super_admin.id, admin.id, RoleName.CLERK)
        assert outcome.ok
        assert registry.get_principal(admin.id).role is RoleName.CLERK

    def test_unknown_role_outcome(self, registry, super_admin):
        admin = registry.create_principal("auth0|first", BARANGAY).value
        outcome = registry.assign_role(super_admin.id, admin.id, "mayor")
        assert outcome.error is ErrorKind.INVALID_INPUT
        assert outcome.value is None
        assert registry.get_principal(admin.id).role is RoleName.BARANGAY_ADMIN


class TestCatalogReload:
    def test_new_barangay_visible_after_reload(self, registry, store):
        new_unit = GeographicUnit(
            code="042114016", name="Bucandala III", level=GeoLevel.BARANGAY, parent_code="042114",
        )
        registry.catalogs.get()
        store.upsert_geographic_units([new_unit])

        assert registry.create_principal("auth0|new", "042114016").error is ErrorKind.INVALID_GEO_CODE
        registry.reload_catalog()
        outcome = registry.create_principal("auth0|new", "042114016")
        assert outcome.value.role is RoleName.BARANGAY_ADMIN


class TestStoreFailures:
    @pytest.fixture
    def broken_registry(self, tmp_path, sample_units):
        store = RegistryStore(f"sqlite:///{tmp_path / 'missing' / 'rbi.db'}")
        yield CivilRegistry(store, CatalogCache(lambda: sample_units))
        store.dispose()

    def test_transient_outcome(self, broken_registry):
        outcome = broken_registry.create_household(uuid4())
        assert outcome.error is ErrorKind.TRANSIENT_STORE_ERROR

    def test_signup_transient_outcome(self, broken_registry):
        outcome = broken_registry.create_principal("auth0|first", BARANGAY)
        assert outcome.error is ErrorKind.TRANSIENT_STORE_ERROR

    def test_check_access_raises(self, broken_registry):
        with pytest.raises(TransientStoreError):
            broken_registry.check_access(uuid4(), Operation.READ, BARANGAY)


class TestFromSettings:
    def test_builds_from_settings(self, tmp_path):
        config = RegistrySettings(
            database_url=f"sqlite:///{tmp_path / 'configured.db'}",
            household_sequence_width=6,
        )
        registry = CivilRegistry.from_settings(config)
        try:
            assert registry.store.dialect == "sqlite"
            assert registry.households.codes.width == 6
        finally:
            registry.store.dispose()
