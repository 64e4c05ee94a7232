"""
Civil Registry — the function-level interface the web layer calls into.

Wires the catalog cache, role assignment, access policy and household code
generation together over one ``RegistryStore``. Every operation returns an
explicit value: ``Outcome`` for operations that can fail, ``AccessGrant`` for
access checks. Denials and conflicts are ordinary results here, not
exceptions.
"""

from __future__ import annotations

import enum
from collections.abc import Callable
from typing import TypeVar
from uuid import UUID

import structlog

from rbi_registry.access.assignment import RoleAssignmentEngine
from rbi_registry.access.policy import AccessPolicyEvaluator
from rbi_registry.config import RegistrySettings, settings as default_settings
from rbi_registry.errors import ErrorKind, InvalidInputError, RegistryError
from rbi_registry.geography.catalog import CatalogCache, GeographicCatalog
from rbi_registry.households.codes import HouseholdCodeGenerator
from rbi_registry.households.service import HouseholdService
from rbi_registry.schema import (
    AccessGrant,
    AccessReason,
    GeographicUnit,
    HouseholdAttributes,
    HouseholdRecord,
    Operation,
    Outcome,
    Principal,
    RoleName,
)
from rbi_registry.store.service import RegistryStore

log = structlog.get_logger()

T = TypeVar("T")
E = TypeVar("E", bound=enum.Enum)


def _coerce(enum_type: type[E], value: E | str, what: str) -> E:
    try:
        return enum_type(value)
    except ValueError:
        raise InvalidInputError(f"Unknown {what}: {value!r}", value=str(value)) from None


class CivilRegistry:
    """
    Entry point for signup, access checks and household creation.

    Usage:
        registry = CivilRegistry.from_settings()
        outcome = registry.create_principal("auth0|123", "042114014")
        if outcome.ok:
            grant = registry.check_access(outcome.value.id, "read", "042114014")
    """

    def __init__(
        self,
        store: RegistryStore,
        catalogs: CatalogCache | None = None,
        sequence_width: int = 4,
    ) -> None:
        self.store = store
        self.catalogs = catalogs or CatalogCache(store.load_geographic_units)
        self.assignment = RoleAssignmentEngine(store, self.catalogs)
        self.households = HouseholdService(
            store, self.catalogs, HouseholdCodeGenerator(sequence_width),
        )
        self._evaluator: tuple[GeographicCatalog, AccessPolicyEvaluator] | None = None

    @classmethod
    def from_settings(cls, config: RegistrySettings | None = None) -> CivilRegistry:
        config = config or default_settings
        store = RegistryStore(
            config.database_url_sync,
            sqlite_busy_timeout=config.sqlite_busy_timeout_seconds,
        )
        catalogs = CatalogCache(
            store.load_geographic_units, ttl_seconds=config.catalog_cache_ttl_seconds,
        )
        return cls(store, catalogs, sequence_width=config.household_sequence_width)

    @property
    def policy(self) -> AccessPolicyEvaluator:
        """Evaluator over the current catalog, rebuilt when the catalog reloads."""
        catalog = self.catalogs.get()
        cached = self._evaluator
        if cached is None or cached[0] is not catalog:
            cached = (catalog, AccessPolicyEvaluator(catalog))
            self._evaluator = cached
        return cached[1]

    # ── Signup ─────────────────────────────────────────────────

    def create_principal(self, external_identity_id: str, barangay_code: str) -> Outcome[Principal]:
        """
        Create the principal for a new signup; the role is decided here.

        A repeated call for the same identity returns CONFLICT with the
        existing principal as ``value``.
        """
        outcome = self._run(
            "principal.create",
            lambda: self.assignment.create_principal(external_identity_id, barangay_code),
            external_identity_id=external_identity_id,
            barangay_code=barangay_code,
        )
        if outcome.ok:
            log.info(
                "rbi_registry.principal.created",
                principal_id=str(outcome.value.id),
                role=outcome.value.role.value,
                barangay_code=barangay_code,
            )
        return outcome

    def barangay_has_admin(self, barangay_code: str) -> Outcome[bool]:
        return self._run(
            "barangay.has_admin",
            lambda: self.assignment.barangay_has_admin(barangay_code),
            barangay_code=barangay_code,
        )

    def get_principal(self, principal_id: UUID) -> Principal | None:
        return self.assignment.get_principal(principal_id)

    # ── Access ─────────────────────────────────────────────────

    def check_access(
        self,
        principal_id: UUID,
        operation: Operation | str,
        target_geo_code: str,
    ) -> AccessGrant:
        """
        Evaluate the access policy for a stored principal.

        Store failures while loading the principal raise
        ``TransientStoreError``; the caller retries with backoff. An operation
        name outside ``Operation`` raises ``InvalidInputError``.
        """
        operation = _coerce(Operation, operation, "operation")
        principal = self.assignment.get_principal(principal_id)
        if principal is None:
            return AccessGrant(
                allowed=False,
                reason=AccessReason.UNKNOWN_PRINCIPAL,
                principal_id=principal_id,
                operation=operation,
                target_geo_code=target_geo_code,
            )
        return self.policy.authorize(principal, operation, target_geo_code)

    def accessible_barangays(self, principal_id: UUID) -> list[GeographicUnit]:
        principal = self.assignment.get_principal(principal_id)
        if principal is None:
            return []
        return self.policy.accessible_barangays(principal)

    # ── Households ─────────────────────────────────────────────

    def create_household(
        self,
        principal_id: UUID,
        attributes: HouseholdAttributes | dict | None = None,
        barangay_code: str | None = None,
    ) -> Outcome[HouseholdRecord]:
        """
        Create a household after checking WRITE access.

        The household goes to ``barangay_code`` when given (required for
        principals not bound to a barangay), else the principal's barangay.
        """
        lookup = self._run(
            "principal.get",
            lambda: self.assignment.get_principal(principal_id),
            principal_id=str(principal_id),
        )
        if not lookup.ok:
            return Outcome(error=lookup.error, message=lookup.message)
        principal = lookup.value
        if principal is None:
            return Outcome(error=ErrorKind.NOT_FOUND, message=f"Unknown principal: {principal_id}")

        target = barangay_code or principal.barangay_code
        if target is None:
            return Outcome(
                error=ErrorKind.INVALID_GEO_CODE,
                message="A barangay code is required for principals without a barangay",
            )

        grant = self.policy.authorize(principal, Operation.WRITE, target)
        if not grant.allowed:
            log.info(
                "rbi_registry.household.denied",
                principal_id=str(principal_id),
                barangay_code=target,
                reason=grant.reason.value,
            )
            return Outcome(
                error=ErrorKind.ACCESS_DENIED, message=grant.reason.value, grant=grant,
            )

        if isinstance(attributes, dict):
            attributes = HouseholdAttributes(**attributes)

        outcome = self._run(
            "household.create",
            lambda: self.households.create_household(target, attributes, created_by=principal.id),
            principal_id=str(principal_id),
            barangay_code=target,
        )
        outcome.grant = grant
        if outcome.ok:
            log.info(
                "rbi_registry.household.created",
                code=outcome.value.code,
                sequence_number=outcome.value.sequence_number,
                principal_id=str(principal_id),
            )
        return outcome

    # ── Administration ─────────────────────────────────────────

    def deactivate_principal(self, actor_id: UUID, principal_id: UUID) -> Outcome[Principal]:
        return self._run(
            "principal.deactivate",
            lambda: self.assignment.deactivate_principal(actor_id, principal_id),
            actor_id=str(actor_id),
            principal_id=str(principal_id),
        )

    def assign_role(
        self,
        actor_id: UUID,
        principal_id: UUID,
        role: RoleName | str,
        scope_code: str | None = None,
    ) -> Outcome[Principal]:
        return self._run(
            "principal.assign_role",
            lambda: self.assignment.assign_role(
                actor_id, principal_id, _coerce(RoleName, role, "role"), scope_code,
            ),
            actor_id=str(actor_id),
            principal_id=str(principal_id),
            role=str(role),
        )

    def reload_catalog(self) -> GeographicCatalog:
        return self.catalogs.reload()

    # ── Internal ────────────────────────────────────────────────

    @staticmethod
    def _run(operation: str, action: Callable[[], T], **context) -> Outcome[T]:
        try:
            return Outcome(value=action())
        except RegistryError as exc:
            log.warning(
                f"rbi_registry.{operation}.failed",
                error=exc.kind.value,
                message=exc.message,
                **context,
            )
            return Outcome(
                value=getattr(exc, "existing", None),
                error=exc.kind,
                message=exc.message,
            )
