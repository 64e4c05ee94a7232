"""
Registry Schema — Pydantic models for the registry's domain entities.

These models are the canonical in-process shapes of the data the registry
works with. The SQLAlchemy rows in ``rbi_registry.store.models`` are
converted into these before they leave a transaction, so callers never touch
a session-bound object.

Entities:
    GeographicUnit  — one node of the PSGC hierarchy
    Role            — a role definition and the level it binds to
    Principal       — an authenticated identity's profile
    HouseholdRecord — a household with its generated code
    AccessGrant     — the (unpersisted) result of an access decision
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from rbi_registry.errors import ErrorKind


# ════════════════════════════════════════════════════════════════
# Enumerations
# ════════════════════════════════════════════════════════════════


class GeoLevel(str, enum.Enum):
    """Levels of the PSGC hierarchy, root first."""

    REGION = "region"
    PROVINCE = "province"
    CITY = "city"
    BARANGAY = "barangay"

    @property
    def depth(self) -> int:
        return _LEVEL_ORDER.index(self)

    @property
    def parent_level(self) -> GeoLevel | None:
        if self is GeoLevel.REGION:
            return None
        return _LEVEL_ORDER[self.depth - 1]


_LEVEL_ORDER = [GeoLevel.REGION, GeoLevel.PROVINCE, GeoLevel.CITY, GeoLevel.BARANGAY]


class RoleName(str, enum.Enum):
    """Role names seeded into the roles table."""

    SUPER_ADMIN = "super_admin"
    REGION_ADMIN = "region_admin"
    PROVINCE_ADMIN = "province_admin"
    CITY_ADMIN = "city_admin"
    BARANGAY_ADMIN = "barangay_admin"
    CLERK = "clerk"
    RESIDENT = "resident"


class Operation(str, enum.Enum):
    """Operations checked by the access policy."""

    READ = "read"
    WRITE = "write"


class AccessReason(str, enum.Enum):
    """Why an access decision came out the way it did."""

    WITHIN_SCOPE = "within_scope"
    GLOBAL_SCOPE = "global_scope"
    OWNER_ONLY = "owner_only"
    PRINCIPAL_INACTIVE = "principal_inactive"
    OUT_OF_SCOPE = "out_of_scope"
    UNKNOWN_GEO_CODE = "unknown_geo_code"
    UNKNOWN_PRINCIPAL = "unknown_principal"


# ════════════════════════════════════════════════════════════════
# Core Models
# ════════════════════════════════════════════════════════════════


class GeographicUnit(BaseModel):
    """A region, province, city/municipality or barangay."""

    model_config = ConfigDict(frozen=True)

    code: str = Field(description="PSGC code, e.g. '042114014'")
    name: str = Field(default="", description="Official name")
    level: GeoLevel
    parent_code: str | None = Field(
        default=None, description="Code of the unit one level up (None for regions)"
    )


class Role(BaseModel):
    """
    A role definition.

    ``scope_level`` is the hierarchy level a holder of this role is bound to.
    None means national scope: the holder is bound to no unit at all.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID | None = None
    name: RoleName
    scope_level: GeoLevel | None
    permissions: frozenset[Operation] = Field(default_factory=frozenset)
    description: str = ""

    def can(self, operation: Operation) -> bool:
        return operation in self.permissions


class Principal(BaseModel):
    """An authenticated identity's profile, bound to one role."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    external_identity_id: str
    role_id: UUID
    role: RoleName
    scope_code: str | None = Field(
        default=None, description="Unit the role is bound to (None for national scope)"
    )
    barangay_code: str | None = Field(
        default=None, description="Bound barangay for barangay-level roles"
    )
    is_active: bool = True
    created_at: datetime | None = None
    deactivated_at: datetime | None = None


class HouseholdAttributes(BaseModel):
    """Caller-supplied household fields."""

    house_number: str | None = None
    street_name: str | None = None
    subdivision: str | None = None
    zip_code: str | None = None


class HouseholdRecord(BaseModel):
    """A household row with its generated hierarchical code."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    code: str
    barangay_code: str
    sequence_number: int | None
    region_code: str | None = None
    province_code: str | None = None
    city_municipality_code: str | None = None
    house_number: str | None = None
    street_name: str | None = None
    subdivision: str | None = None
    zip_code: str | None = None
    created_by: UUID | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class AccessGrant:
    """Result of evaluating a principal against a target geographic code."""

    allowed: bool
    reason: AccessReason
    principal_id: UUID | None
    operation: Operation
    target_geo_code: str
    ownership_required: bool = False


T = TypeVar("T")


@dataclass
class Outcome(Generic[T]):
    """Explicit success / failure value returned by the registry facade."""

    value: T | None = None
    error: ErrorKind | None = None
    message: str = ""
    grant: AccessGrant | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ════════════════════════════════════════════════════════════════
# Role Catalog
# ════════════════════════════════════════════════════════════════

_READ = frozenset({Operation.READ})
_READ_WRITE = frozenset({Operation.READ, Operation.WRITE})

DEFAULT_ROLES: dict[RoleName, Role] = {
    RoleName.SUPER_ADMIN: Role(
        name=RoleName.SUPER_ADMIN,
        scope_level=None,
        permissions=_READ_WRITE,
        description="System-wide access",
    ),
    RoleName.REGION_ADMIN: Role(
        name=RoleName.REGION_ADMIN,
        scope_level=GeoLevel.REGION,
        permissions=_READ_WRITE,
        description="Regional access",
    ),
    RoleName.PROVINCE_ADMIN: Role(
        name=RoleName.PROVINCE_ADMIN,
        scope_level=GeoLevel.PROVINCE,
        permissions=_READ_WRITE,
        description="Provincial access",
    ),
    RoleName.CITY_ADMIN: Role(
        name=RoleName.CITY_ADMIN,
        scope_level=GeoLevel.CITY,
        permissions=_READ_WRITE,
        description="City/municipality access",
    ),
    RoleName.BARANGAY_ADMIN: Role(
        name=RoleName.BARANGAY_ADMIN,
        scope_level=GeoLevel.BARANGAY,
        permissions=_READ_WRITE,
        description="Barangay administrator; at most one active per barangay",
    ),
    RoleName.CLERK: Role(
        name=RoleName.CLERK,
        scope_level=GeoLevel.BARANGAY,
        permissions=_READ_WRITE,
        description="Barangay encoder",
    ),
    RoleName.RESIDENT: Role(
        name=RoleName.RESIDENT,
        scope_level=GeoLevel.BARANGAY,
        permissions=_READ,
        description="Reads own barangay; writes only rows they created",
    ),
}

# Roles the signup path cannot work without
SIGNUP_ROLES = (RoleName.BARANGAY_ADMIN, RoleName.RESIDENT)
