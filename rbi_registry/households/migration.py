"""
Legacy Household Code Migration — one-shot rewrite into hierarchical codes.

Older rows carry codes such as ``HH-014-729881``, ``HH-000123`` or the
four-part ``RRPPMMBBB-SSSS-TTTT-HHHH`` form. This routine rewrites them into
``<barangay>-<sequence>`` codes.

Precondition:  a barangay may hold households whose codes are not canonical
               for that barangay, or canonical codes whose ``sequence_number``
               is missing or disagrees with the code.
Postcondition: every household of the barangay has a canonical code and the
               sequence number that code encodes, and every resident
               reference points at an existing household code.

Each barangay is migrated in its own transaction. Rows with a canonical code
but no matching sequence adopt the sequence their code encodes, unless another
row already holds it. Every other row needing work is renamed: new sequence
numbers come from the same atomic counter used for new households, raised
first above every sequence already in use, and residents pointing at the old
code are repointed. The postcondition is checked before commit; a failed
check rolls the whole barangay back. Re-running the migration is a no-op.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from rbi_registry.errors import ConflictError, RegistryError
from rbi_registry.households.codes import HouseholdCodeGenerator, parse_household_code
from rbi_registry.store.models import HouseholdDB, ResidentDB
from rbi_registry.store.service import RegistryStore

logger = logging.getLogger(__name__)


class MigrationVerificationError(RegistryError):
    """The post-migration consistency check failed; the barangay was rolled back."""


@dataclass
class BarangayMigrationReport:
    """What happened (or would happen, on a dry run) to one barangay."""

    barangay_code: str
    renamed: dict[str, str] = field(default_factory=dict)
    adopted: dict[str, int] = field(default_factory=dict)
    residents_repointed: int = 0
    dry_run: bool = False

    @property
    def households_renamed(self) -> int:
        return len(self.renamed)

    @property
    def sequences_adopted(self) -> int:
        return len(self.adopted)


def needs_migration(code: str, barangay_code: str, sequence_number: int | None) -> bool:
    parsed = parse_household_code(code, barangay_code)
    return parsed is None or parsed[1] != sequence_number


class LegacyCodeMigration:
    """
    Rewrites legacy household codes, one transaction per barangay.

    Usage:
        migration = LegacyCodeMigration(store)
        for report in migration.migrate_all():
            print(report.barangay_code, report.households_renamed)
    """

    def __init__(self, store: RegistryStore, codes: HouseholdCodeGenerator | None = None) -> None:
        self.store = store
        self.codes = codes or HouseholdCodeGenerator()

    def affected_barangays(self) -> list[str]:
        """Barangays that still hold at least one household needing migration."""
        with self.store.transaction() as session:
            rows = session.execute(
                select(HouseholdDB.barangay_code, HouseholdDB.code, HouseholdDB.sequence_number)
            ).all()
        return sorted({
            barangay for barangay, code, sequence in rows
            if needs_migration(code, barangay, sequence)
        })

    def migrate_all(self, dry_run: bool = False) -> list[BarangayMigrationReport]:
        return [
            self.migrate_barangay(barangay_code, dry_run=dry_run)
            for barangay_code in self.affected_barangays()
        ]

    def migrate_barangay(self, barangay_code: str, dry_run: bool = False) -> BarangayMigrationReport:
        """
        Bring every household of one barangay to a canonical code in a single
        transaction.

        Raises:
            ConflictError: A rewritten code would collide with a live code.
            MigrationVerificationError: The postcondition check failed.
        """
        if dry_run:
            return self._plan(barangay_code)

        report = BarangayMigrationReport(barangay_code=barangay_code)
        with self.store.transaction() as session:
            households = self._households(session, barangay_code)
            adopt, legacy = self._classify(households, barangay_code)
            if not adopt and not legacy:
                return report

            highest = self._highest_sequence(households)

            # Release stale sequence numbers before any is reassigned
            for household in [h for h, _ in adopt] + legacy:
                household.sequence_number = None
            session.flush()

            for household, sequence in adopt:
                household.sequence_number = sequence
                report.adopted[household.code] = sequence
            session.flush()

            self.codes.raise_floor(session, barangay_code, highest)

            for household in legacy:
                new_code, sequence = self.codes.next_household_code(session, barangay_code)
                clash = session.execute(
                    select(HouseholdDB.id).where(HouseholdDB.code == new_code)
                ).scalar_one_or_none()
                if clash is not None:
                    raise ConflictError(
                        f"Rewritten code {new_code} collides with an existing household",
                        barangay_code=barangay_code,
                    )

                old_code = household.code
                household.code = new_code
                household.sequence_number = sequence
                session.flush()

                result = session.execute(
                    update(ResidentDB)
                    .where(ResidentDB.household_code == old_code)
                    .values(household_code=new_code)
                )
                report.renamed[old_code] = new_code
                report.residents_repointed += result.rowcount or 0

            self._verify(session, barangay_code)

        logger.info(
            "Barangay %s migrated: %d households renamed, %d sequences adopted, "
            "%d residents repointed",
            barangay_code, report.households_renamed, report.sequences_adopted,
            report.residents_repointed,
        )
        return report

    def _plan(self, barangay_code: str) -> BarangayMigrationReport:
        report = BarangayMigrationReport(barangay_code=barangay_code, dry_run=True)
        with self.store.transaction() as session:
            households = self._households(session, barangay_code)
            adopt, legacy = self._classify(households, barangay_code)
            for household, sequence in adopt:
                report.adopted[household.code] = sequence
            start = max(
                self.codes.current_sequence(session, barangay_code),
                self._highest_sequence(households),
            )
            for offset, household in enumerate(legacy, start=1):
                report.renamed[household.code] = self.codes.format(barangay_code, start + offset)
                report.residents_repointed += session.execute(
                    select(func.count()).select_from(ResidentDB)
                    .where(ResidentDB.household_code == household.code)
                ).scalar() or 0
        return report

    @staticmethod
    def _households(session: Session, barangay_code: str) -> list[HouseholdDB]:
        # Oldest first so legacy households keep their relative order
        return list(
            session.execute(
                select(HouseholdDB)
                .where(HouseholdDB.barangay_code == barangay_code)
                .order_by(HouseholdDB.created_at, HouseholdDB.code)
                .with_for_update()
            ).scalars().all()
        )

    @staticmethod
    def _classify(
        households: list[HouseholdDB],
        barangay_code: str,
    ) -> tuple[list[tuple[HouseholdDB, int]], list[HouseholdDB]]:
        """
        Split the households needing work into ``(adopt, legacy)``.

        ``adopt`` pairs a canonical code with the sequence it encodes; a
        sequence already held by a settled row, or claimed by an earlier row,
        sends the later row to ``legacy`` for a fresh code.
        """
        taken = set()
        pending = []
        for household in households:
            parsed = parse_household_code(household.code, barangay_code)
            if parsed is not None and parsed[1] == household.sequence_number:
                taken.add(parsed[1])
            else:
                pending.append((household, parsed))

        adopt, renamed = [], set()
        for household, parsed in pending:
            if parsed is not None and parsed[1] not in taken:
                taken.add(parsed[1])
                adopt.append((household, parsed[1]))
            else:
                renamed.add(household.id)

        legacy = [h for h in households if h.id in renamed]
        return adopt, legacy

    @staticmethod
    def _highest_sequence(households: list[HouseholdDB]) -> int:
        highest = 0
        for household in households:
            if household.sequence_number is not None:
                highest = max(highest, household.sequence_number)
            parsed = parse_household_code(household.code, household.barangay_code)
            if parsed is not None:
                highest = max(highest, parsed[1])
        return highest

    @staticmethod
    def _verify(session: Session, barangay_code: str) -> None:
        rows = session.execute(
            select(HouseholdDB.code, HouseholdDB.sequence_number)
            .where(HouseholdDB.barangay_code == barangay_code)
        ).all()
        remaining = [
            code for code, sequence in rows
            if needs_migration(code, barangay_code, sequence)
        ]
        if remaining:
            raise MigrationVerificationError(
                f"Barangay {barangay_code} still has legacy codes or unmatched "
                f"sequences: {', '.join(remaining)}",
                barangay_code=barangay_code,
            )

        dangling = session.execute(
            select(func.count()).select_from(ResidentDB)
            .outerjoin(HouseholdDB, ResidentDB.household_code == HouseholdDB.code)
            .where(
                ResidentDB.barangay_code == barangay_code,
                ResidentDB.household_code.is_not(None),
                HouseholdDB.id.is_(None),
            )
        ).scalar() or 0
        if dangling:
            raise MigrationVerificationError(
                f"Barangay {barangay_code} has {dangling} residents pointing at missing households",
                barangay_code=barangay_code,
            )
