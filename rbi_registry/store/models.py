"""
Registry Store — SQLAlchemy models for roles, principals, geography and households.

Two uniqueness rules carry the registry's concurrency guarantees:

1. ``principals.admin_slot`` — holds the barangay code while the principal is
   an *active* barangay administrator and NULL otherwise. A plain UNIQUE
   constraint on it means at most one active admin per barangay; NULLs never
   collide, so the rule is portable across engines.
2. ``household_counters.barangay_code`` — one counter row per barangay,
   incremented atomically by an upsert inside the household insert
   transaction. ``households(barangay_code, sequence_number)`` is unique too.

Rows are never deleted: principals are deactivated, households keep their
sequence numbers even after a code migration.
"""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all registry models."""
    pass


class RoleDB(Base):
    """Role catalog. Small and static; seeded by ``RegistryStore.initialize``."""

    __tablename__ = "roles"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(50), nullable=False, unique=True)
    scope_level = Column(
        String(20), nullable=True,
        comment="Geographic level the holder binds to; NULL for national scope",
    )
    permissions = Column(JSON, nullable=False, default=list)
    description = Column(String(200), nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())


class GeographicUnitDB(Base):
    """
    PSGC reference data — region, province, city/municipality, barangay.

    Loaded out of band; read-only at request time.
    """

    __tablename__ = "geographic_units"

    code = Column(String(10), primary_key=True)
    name = Column(String(200), nullable=False, default="")
    level = Column(String(20), nullable=False)
    parent_code = Column(
        String(10), ForeignKey("geographic_units.code"), nullable=True,
    )

    __table_args__ = (
        Index("ix_geo_parent", "parent_code"),
        Index("ix_geo_level", "level"),
    )

    def __repr__(self) -> str:
        return f"<GeographicUnit {self.level}:{self.code}>"


class PrincipalDB(Base):
    """
    One profile per authenticated identity.

    ``scope_code`` is the unit the role binds to; ``barangay_code`` mirrors it
    for barangay-level roles. ``admin_slot`` is the uniqueness carrier for the
    single-admin rule (see module docstring).
    """

    __tablename__ = "principals"

    id = Column(Uuid, primary_key=True, default=uuid4)
    external_identity_id = Column(String(255), nullable=False, unique=True)
    role_id = Column(Uuid, ForeignKey("roles.id"), nullable=False)
    scope_code = Column(String(10), ForeignKey("geographic_units.code"), nullable=True)
    barangay_code = Column(String(10), ForeignKey("geographic_units.code"), nullable=True)
    admin_slot = Column(
        String(10), nullable=True,
        comment="Barangay code while an active barangay admin, else NULL",
    )
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now(),
    )
    deactivated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("admin_slot", name="uq_principal_admin_slot"),
        Index("ix_principal_barangay", "barangay_code"),
        Index("ix_principal_role", "role_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Principal {self.external_identity_id} "
            f"scope={self.scope_code} active={self.is_active}>"
        )


class HouseholdCounterDB(Base):
    """Per-barangay household sequence. Created with the first household."""

    __tablename__ = "household_counters"

    barangay_code = Column(
        String(10), ForeignKey("geographic_units.code"), primary_key=True,
    )
    last_sequence = Column(Integer, nullable=False, default=0)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now(),
    )


class HouseholdDB(Base):
    """
    Households keyed by their generated code.

    Legacy rows carry a NULL ``sequence_number`` until the code migration
    rewrites them.
    """

    __tablename__ = "households"

    id = Column(Uuid, primary_key=True, default=uuid4)
    code = Column(String(50), nullable=False, unique=True)
    barangay_code = Column(
        String(10), ForeignKey("geographic_units.code"), nullable=False,
    )
    sequence_number = Column(Integer, nullable=True)
    region_code = Column(String(10), nullable=True)
    province_code = Column(String(10), nullable=True)
    city_municipality_code = Column(String(10), nullable=True)
    house_number = Column(String(50), nullable=True)
    street_name = Column(String(200), nullable=True)
    subdivision = Column(String(100), nullable=True)
    zip_code = Column(String(10), nullable=True)
    created_by = Column(Uuid, ForeignKey("principals.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint(
            "barangay_code", "sequence_number", name="uq_household_barangay_sequence",
        ),
        Index("ix_household_barangay", "barangay_code"),
    )

    def __repr__(self) -> str:
        return f"<Household {self.code}>"


class ResidentDB(Base):
    """
    Residents, linked to their household by code.

    The household reference is deferrable so a code rewrite can repoint
    residents inside the same transaction as the rename.
    """

    __tablename__ = "residents"

    id = Column(Uuid, primary_key=True, default=uuid4)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    barangay_code = Column(
        String(10), ForeignKey("geographic_units.code"), nullable=False,
    )
    household_code = Column(
        String(50),
        ForeignKey("households.code", deferrable=True, initially="DEFERRED"),
        nullable=True,
    )
    created_by = Column(Uuid, ForeignKey("principals.id"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        Index("ix_resident_household", "household_code"),
        Index("ix_resident_barangay", "barangay_code"),
    )
