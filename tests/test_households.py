"""
Tests for the Household Service.
"""

from __future__ import annotations

from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from rbi_registry.errors import InvalidGeoCodeError
from rbi_registry.households.codes import HouseholdCodeGenerator
from rbi_registry.households.service import HouseholdService
from rbi_registry.schema import HouseholdAttributes

BARANGAY = "042114014"


@pytest.fixture
def service(store, catalogs):
    return HouseholdService(store, catalogs)


class TestCreateHousehold:
    def test_first_household_code(self, service):
        record = service.create_household(BARANGAY)
        assert record.code == "042114014-0001"
        assert record.sequence_number == 1
        assert record.barangay_code == BARANGAY

    def test_derived_codes_follow_catalog(self, service):
        record = service.create_household(BARANGAY)
        assert record.region_code == "04"
        assert record.province_code == "0421"
        assert record.city_municipality_code == "042114"

    def test_attributes_persisted(self, service):
        attributes = HouseholdAttributes(house_number="12", street_name="Mabini St.")
        record = service.create_household(BARANGAY, attributes)
        stored = service.get_household(record.code)
        assert stored.house_number == "12"
        assert stored.street_name == "Mabini St."
        assert stored.subdivision is None

    def test_created_by_recorded(self, service, super_admin):
        record = service.create_household(BARANGAY, created_by=super_admin.id)
        assert record.created_by == super_admin.id

    def test_sequences_independent_per_barangay(self, service):
        service.create_household(BARANGAY)
        service.create_household(BARANGAY)
        other = service.create_household("137404001")
        assert other.code == "137404001-0001"
        assert other.region_code == "13"

    def test_unknown_barangay(self, service):
        with pytest.raises(InvalidGeoCodeError):
            service.create_household("999999999")

    def test_city_is_not_a_barangay(self, service):
        with pytest.raises(InvalidGeoCodeError):
            service.create_household("042114")

    def test_failed_insert_releases_sequence(self, service):
        with pytest.raises(IntegrityError):
            service.create_household(BARANGAY, created_by=uuid4())
        assert service.create_household(BARANGAY).sequence_number == 1
        assert service.list_households(BARANGAY)[0].code == "042114014-0001"

    def test_configured_width(self, store, catalogs):
        service = HouseholdService(store, catalogs, HouseholdCodeGenerator(width=6))
        assert service.create_household(BARANGAY).code == "042114014-000001"


class TestQueries:
    def test_get_missing(self, service):
        assert service.get_household("042114014-9999") is None

    def test_list_newest_first(self, service):
        for _ in range(3):
            service.create_household(BARANGAY)
        service.create_household("042114015")
        codes = [h.code for h in service.list_households(BARANGAY)]
        assert codes == ["042114014-0003", "042114014-0002", "042114014-0001"]

    def test_list_limit(self, service):
        for _ in range(3):
            service.create_household(BARANGAY)
        assert len(service.list_households(BARANGAY, limit=2)) == 2
