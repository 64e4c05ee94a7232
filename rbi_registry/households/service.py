"""
Household Service — creates households with hierarchical codes.

``create_household`` runs the counter increment and the household insert in a
single transaction, so a failed insert leaves neither a household row nor a
consumed sequence number visible to anyone else.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select

from rbi_registry.geography.catalog import CatalogCache
from rbi_registry.households.codes import HouseholdCodeGenerator
from rbi_registry.schema import (
    GeoLevel,
    HouseholdAttributes,
    HouseholdRecord,
)
from rbi_registry.store.models import HouseholdDB
from rbi_registry.store.service import RegistryStore

logger = logging.getLogger(__name__)


class HouseholdService:
    """Household persistence for the registry."""

    def __init__(
        self,
        store: RegistryStore,
        catalogs: CatalogCache,
        codes: HouseholdCodeGenerator | None = None,
    ) -> None:
        self.store = store
        self.catalogs = catalogs
        self.codes = codes or HouseholdCodeGenerator()

    def create_household(
        self,
        barangay_code: str,
        attributes: HouseholdAttributes | None = None,
        created_by: UUID | None = None,
    ) -> HouseholdRecord:
        """
        Insert a household in ``barangay_code`` under the next sequence number.

        The caller is responsible for the access check.

        Raises:
            InvalidGeoCodeError: ``barangay_code`` is not a known barangay.
        """
        catalog = self.catalogs.get()
        catalog.require(barangay_code, GeoLevel.BARANGAY)
        derived = catalog.derive_codes(barangay_code)
        attributes = attributes or HouseholdAttributes()

        with self.store.transaction() as session:
            code, sequence = self.codes.next_household_code(session, barangay_code)
            row = HouseholdDB(
                code=code,
                barangay_code=barangay_code,
                sequence_number=sequence,
                created_by=created_by,
                **derived,
                **attributes.model_dump(),
            )
            session.add(row)
            session.flush()
            record = household_from_row(row)

        logger.info("Household created: code=%s by=%s", code, created_by)
        return record

    def get_household(self, code: str) -> HouseholdRecord | None:
        with self.store.transaction() as session:
            row = session.execute(
                select(HouseholdDB).where(HouseholdDB.code == code)
            ).scalar_one_or_none()
            return household_from_row(row) if row else None

    def list_households(self, barangay_code: str, limit: int = 100) -> list[HouseholdRecord]:
        """Households of a barangay, newest sequence first."""
        with self.store.transaction() as session:
            rows = session.execute(
                select(HouseholdDB)
                .where(HouseholdDB.barangay_code == barangay_code)
                .order_by(HouseholdDB.sequence_number.desc(), HouseholdDB.code)
                .limit(limit)
            ).scalars().all()
            return [household_from_row(row) for row in rows]


def household_from_row(row: HouseholdDB) -> HouseholdRecord:
    return HouseholdRecord(
        id=row.id,
        code=row.code,
        barangay_code=row.barangay_code,
        sequence_number=row.sequence_number,
        region_code=row.region_code,
        province_code=row.province_code,
        city_municipality_code=row.city_municipality_code,
        house_number=row.house_number,
        street_name=row.street_name,
        subdivision=row.subdivision,
        zip_code=row.zip_code,
        created_by=row.created_by,
        created_at=row.created_at,
    )
