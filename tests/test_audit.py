"""
Tests for the Registry Consistency Audit.

The audit recomputes registry invariants from the tables; these tests break
rows behind the components' backs and check that each break is reported.
"""

from __future__ import annotations

from sqlalchemy import select, update

from rbi_registry.schema import RoleName
from rbi_registry.store.audit import run_consistency_checks
from rbi_registry.store.models import HouseholdCounterDB, PrincipalDB, RoleDB

BARANGAY = "042114014"


def _populate(registry):
    admin = registry.create_principal("auth0|first", BARANGAY).value
    resident = registry.create_principal("auth0|second", BARANGAY).value
    registry.create_household(admin.id)
    registry.create_household(admin.id)
    return admin, resident


class TestCleanStore:
    def test_empty_store_is_consistent(self, store):
        report = run_consistency_checks(store)
        assert report.is_consistent
        assert report.principals_checked == 0

    def test_registry_activity_is_consistent(self, registry, store, super_admin):
        _populate(registry)
        report = run_consistency_checks(store)
        assert report.is_consistent, report.findings
        assert report.principals_checked == 3
        assert report.households_checked == 2


class TestFindings:
    def test_second_active_admin(self, registry, store):
        _, resident = _populate(registry)
        with store.transaction() as session:
            admin_role = session.execute(
                select(RoleDB.id).where(RoleDB.name == RoleName.BARANGAY_ADMIN.value)
            ).scalar_one()
            session.execute(
                update(PrincipalDB)
                .where(PrincipalDB.id == resident.id)
                .values(role_id=admin_role)
            )

        report = run_consistency_checks(store)
        checks = report.by_check()
        assert checks["single_admin"] == 1
        assert checks["admin_slot"] == 1

    def test_slot_held_by_resident(self, registry, store):
        _, resident = _populate(registry)
        with store.transaction() as session:
            session.execute(
                update(PrincipalDB)
                .where(PrincipalDB.id == resident.id)
                .values(admin_slot="042114015")
            )

        findings = run_consistency_checks(store).findings
        assert [f.check for f in findings] == ["admin_slot"]
        assert findings[0].subject == "auth0|second"

    def test_super_admin_bound_to_unit(self, registry, store, super_admin):
        with store.transaction() as session:
            session.execute(
                update(PrincipalDB)
                .where(PrincipalDB.id == super_admin.id)
                .values(scope_code="04")
            )
        assert run_consistency_checks(store).by_check() == {"principal_scope": 1}

    def test_counter_behind_issued_sequence(self, registry, store):
        _populate(registry)
        with store.transaction() as session:
            session.execute(
                update(HouseholdCounterDB)
                .where(HouseholdCounterDB.barangay_code == BARANGAY)
                .values(last_sequence=1)
            )
        report = run_consistency_checks(store)
        assert report.by_check() == {"household_counter": 1}
        assert not report.is_consistent
