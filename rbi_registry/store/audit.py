"""
Registry Consistency Audit — independent verification of the store's invariants.

Recomputes, straight from the tables, the rules the registry components are
supposed to maintain:

- at most one active BARANGAY_ADMIN per barangay
- ``admin_slot`` set exactly for active barangay admins
- every principal bound to a unit at its role's level
- every household code canonical for its barangay and matching its sequence
- every counter at or above the highest sequence it has handed out
- every resident pointing at an existing household

Nothing here writes.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field

from sqlalchemy import func, select

from rbi_registry.geography.catalog import GeographicCatalog
from rbi_registry.households.codes import parse_household_code
from rbi_registry.schema import RoleName
from rbi_registry.store.models import (
    HouseholdCounterDB,
    HouseholdDB,
    PrincipalDB,
    ResidentDB,
    RoleDB,
)
from rbi_registry.store.service import RegistryStore


@dataclass(frozen=True)
class Finding:
    """One violated invariant."""

    check: str
    subject: str
    detail: str


@dataclass
class ConsistencyReport:
    findings: list[Finding] = field(default_factory=list)
    principals_checked: int = 0
    households_checked: int = 0
    residents_checked: int = 0

    @property
    def is_consistent(self) -> bool:
        return not self.findings

    def by_check(self) -> dict[str, int]:
        return dict(Counter(f.check for f in self.findings))


def run_consistency_checks(store: RegistryStore) -> ConsistencyReport:
    """Run every check in one read transaction and collect the findings."""
    report = ConsistencyReport()
    catalog = GeographicCatalog(store.load_geographic_units())

    with store.transaction() as session:
        roles = {row.id: row for row in session.execute(select(RoleDB)).scalars().all()}
        principals = session.execute(select(PrincipalDB)).scalars().all()
        households = session.execute(select(HouseholdDB)).scalars().all()
        counters = {
            row.barangay_code: row.last_sequence
            for row in session.execute(select(HouseholdCounterDB)).scalars().all()
        }
        dangling = session.execute(
            select(ResidentDB.id, ResidentDB.household_code)
            .outerjoin(HouseholdDB, ResidentDB.household_code == HouseholdDB.code)
            .where(ResidentDB.household_code.is_not(None), HouseholdDB.id.is_(None))
        ).all()
        report.residents_checked = session.execute(
            select(func.count()).select_from(ResidentDB)
        ).scalar() or 0

    report.principals_checked = len(principals)
    report.households_checked = len(households)

    _check_principals(report, catalog, roles, principals)
    _check_households(report, households, counters)
    for resident_id, household_code in dangling:
        report.findings.append(
            Finding("resident_reference", str(resident_id),
                    f"points at missing household {household_code}")
        )
    return report


def _check_principals(report, catalog, roles, principals) -> None:
    admins_per_barangay: Counter[str] = Counter()

    for principal in principals:
        role = roles.get(principal.role_id)
        subject = principal.external_identity_id
        if role is None:
            report.findings.append(Finding("principal_role", subject, "role is not in the catalog"))
            continue

        is_active_admin = role.name == RoleName.BARANGAY_ADMIN.value and principal.is_active
        if is_active_admin:
            admins_per_barangay[principal.barangay_code] += 1
            if principal.admin_slot != principal.barangay_code:
                report.findings.append(
                    Finding("admin_slot", subject,
                            f"active admin of {principal.barangay_code} has slot {principal.admin_slot}")
                )
        elif principal.admin_slot is not None:
            report.findings.append(
                Finding("admin_slot", subject,
                        f"holds slot {principal.admin_slot} without being an active barangay admin")
            )

        if role.scope_level is None:
            if principal.scope_code is not None:
                report.findings.append(
                    Finding("principal_scope", subject,
                            f"national role {role.name} bound to {principal.scope_code}")
                )
            continue
        unit = catalog.get(principal.scope_code) if principal.scope_code else None
        if unit is None or unit.level.value != role.scope_level:
            report.findings.append(
                Finding("principal_scope", subject,
                        f"{role.name} must be bound to a {role.scope_level}, "
                        f"got {principal.scope_code}")
            )

    for barangay_code, count in sorted(admins_per_barangay.items()):
        if count > 1:
            report.findings.append(
                Finding("single_admin", barangay_code, f"{count} active barangay admins")
            )


def _check_households(report, households, counters) -> None:
    highest: dict[str, int] = {}
    seen: Counter[tuple[str, int]] = Counter()

    for household in households:
        parsed = parse_household_code(household.code, household.barangay_code)
        if parsed is None:
            report.findings.append(
                Finding("household_code", household.code,
                        f"not a canonical code for barangay {household.barangay_code}")
            )
            continue
        if parsed[1] != household.sequence_number:
            report.findings.append(
                Finding("household_code", household.code,
                        f"code encodes sequence {parsed[1]}, row has {household.sequence_number}")
            )
        seen[(household.barangay_code, parsed[1])] += 1
        highest[household.barangay_code] = max(highest.get(household.barangay_code, 0), parsed[1])

    for (barangay_code, sequence), count in sorted(seen.items()):
        if count > 1:
            report.findings.append(
                Finding("household_sequence", barangay_code,
                        f"sequence {sequence} used by {count} households")
            )

    for barangay_code, top in sorted(highest.items()):
        counter = counters.get(barangay_code, 0)
        if counter < top:
            report.findings.append(
                Finding("household_counter", barangay_code,
                        f"counter at {counter} but sequence {top} already issued")
            )
