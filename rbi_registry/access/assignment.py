"""
Role Assignment Engine — decides a new principal's role at signup.

The first active principal of a barangay becomes its BARANGAY_ADMIN; everyone
after that is a RESIDENT. Two simultaneous signups for the same barangay must
not both become admin.

The guarantee comes from the store, not from this process: the admin's row
carries ``admin_slot = barangay_code`` and ``admin_slot`` is UNIQUE. Signup
inserts optimistically as admin when no active admin is visible. If a
concurrent signup won the slot first, the insert fails on that constraint,
the transaction is rolled back and the insert is retried once as RESIDENT.
A RESIDENT row has a NULL slot, so the retry cannot collide on the slot again.

Duplicate identities are caught by the UNIQUE ``external_identity_id`` and
reported as CONFLICT with the existing principal; signup never re-decides a
role for an identity that already has one.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rbi_registry.errors import (
    ConflictError,
    InvalidGeoCodeError,
    NotFoundError,
    PermissionDeniedError,
)
from rbi_registry.geography.catalog import CatalogCache
from rbi_registry.schema import (
    SIGNUP_ROLES,
    GeoLevel,
    Principal,
    Role,
    RoleName,
)
from rbi_registry.store.models import PrincipalDB, RoleDB
from rbi_registry.store.service import RegistryStore

logger = logging.getLogger(__name__)


class RoleAssignmentEngine:
    """
    Creates principals and owns every change to their role or active flag.

    Usage:
        engine = RoleAssignmentEngine(store, catalog_cache)
        principal = engine.create_principal("auth0|123", "042114014")
    """

    def __init__(self, store: RegistryStore, catalogs: CatalogCache) -> None:
        self.store = store
        self.catalogs = catalogs

    # ── Signup ─────────────────────────────────────────────────

    def decide_role(self, session: Session, barangay_code: str) -> Role:
        """
        Decide the role of a new principal for ``barangay_code``.

        Must run inside the transaction that inserts the principal.

        Raises:
            ConfigurationError: If the signup roles are not in the role catalog.
        """
        roles = self.store.require_roles(session, *SIGNUP_ROLES)
        if self._admin_holder(session, barangay_code) is None:
            return roles[RoleName.BARANGAY_ADMIN]
        return roles[RoleName.RESIDENT]

    def create_principal(self, external_identity_id: str, barangay_code: str) -> Principal:
        """
        Create the principal for a newly signed-up identity.

        Args:
            external_identity_id: Identity provider subject.
            barangay_code: Barangay chosen at signup.

        Returns:
            The new principal, with the decided role.

        Raises:
            InvalidGeoCodeError: ``barangay_code`` is not a known barangay.
            ConflictError: The identity already has a principal (``existing``
                is set), or the store rejected the insert twice.
            ConfigurationError: Signup roles are missing.
        """
        self.catalogs.get().require(barangay_code, GeoLevel.BARANGAY)

        existing = self.find_by_identity(external_identity_id)
        if existing is not None:
            raise ConflictError(
                f"Identity {external_identity_id} already has a principal",
                existing=existing,
            )

        try:
            with self.store.transaction() as session:
                role = self.decide_role(session, barangay_code)
                return self._insert(session, external_identity_id, role, barangay_code)
        except IntegrityError as exc:
            self._raise_if_duplicate_identity(external_identity_id, exc)
            logger.info(
                "Admin slot for barangay %s taken concurrently; retrying %s as resident",
                barangay_code, external_identity_id,
            )

        try:
            with self.store.transaction() as session:
                roles = self.store.require_roles(session, RoleName.RESIDENT)
                return self._insert(
                    session, external_identity_id, roles[RoleName.RESIDENT], barangay_code,
                )
        except IntegrityError as exc:
            self._raise_if_duplicate_identity(external_identity_id, exc)
            raise ConflictError(
                f"Principal insert for {external_identity_id} conflicted twice; "
                f"check the role catalog and principals of barangay {barangay_code}",
                barangay_code=barangay_code,
            ) from exc

    def _insert(
        self,
        session: Session,
        external_identity_id: str,
        role: Role,
        scope_code: str | None,
    ) -> Principal:
        is_barangay_role = role.scope_level is GeoLevel.BARANGAY
        row = PrincipalDB(
            external_identity_id=external_identity_id,
            role_id=role.id,
            scope_code=scope_code,
            barangay_code=scope_code if is_barangay_role else None,
            admin_slot=scope_code if role.name is RoleName.BARANGAY_ADMIN else None,
            is_active=True,
        )
        session.add(row)
        session.flush()
        logger.info(
            "Principal created: identity=%s role=%s scope=%s",
            external_identity_id, role.name.value, scope_code,
        )
        return principal_from_row(row, role.name)

    def _raise_if_duplicate_identity(self, external_identity_id: str, exc: IntegrityError) -> None:
        existing = self.find_by_identity(external_identity_id)
        if existing is not None:
            raise ConflictError(
                f"Identity {external_identity_id} already has a principal",
                existing=existing,
            ) from exc

    # ── Lookups ────────────────────────────────────────────────

    def barangay_has_admin(self, barangay_code: str) -> bool:
        """Whether the barangay's admin slot is currently held."""
        self.catalogs.get().require(barangay_code, GeoLevel.BARANGAY)
        with self.store.transaction() as session:
            return self._admin_holder(session, barangay_code) is not None

    def find_by_identity(self, external_identity_id: str) -> Principal | None:
        with self.store.transaction() as session:
            row = session.execute(
                select(PrincipalDB, RoleDB.name)
                .join(RoleDB, PrincipalDB.role_id == RoleDB.id)
                .where(PrincipalDB.external_identity_id == external_identity_id)
            ).one_or_none()
            return principal_from_row(row[0], row[1]) if row else None

    def get_principal(self, principal_id: UUID) -> Principal | None:
        with self.store.transaction() as session:
            row = session.execute(
                select(PrincipalDB, RoleDB.name)
                .join(RoleDB, PrincipalDB.role_id == RoleDB.id)
                .where(PrincipalDB.id == principal_id)
            ).one_or_none()
            return principal_from_row(row[0], row[1]) if row else None

    @staticmethod
    def _admin_holder(session: Session, barangay_code: str) -> PrincipalDB | None:
        return session.execute(
            select(PrincipalDB).where(PrincipalDB.admin_slot == barangay_code)
        ).scalar_one_or_none()

    # ── Privileged administration ──────────────────────────────

    def provision_principal(
        self,
        external_identity_id: str,
        role_name: RoleName,
        scope_code: str | None = None,
    ) -> Principal:
        """
        Create a principal with an explicit role, bypassing signup rules.

        Out-of-band administrative path (e.g. the first SUPER_ADMIN). A
        BARANGAY_ADMIN provisioned here still occupies the admin slot.

        Raises:
            InvalidGeoCodeError: ``scope_code`` does not match the role's level.
            ConflictError: Duplicate identity or admin slot already held.
        """
        with self.store.transaction() as session:
            role = self.store.require_roles(session, role_name)[role_name]
        scope_code = self._check_scope(role, scope_code)

        try:
            with self.store.transaction() as session:
                return self._insert(session, external_identity_id, role, scope_code)
        except IntegrityError as exc:
            self._raise_if_duplicate_identity(external_identity_id, exc)
            raise ConflictError(
                f"Barangay {scope_code} already has an active administrator",
                barangay_code=scope_code,
            ) from exc

    def deactivate_principal(self, actor_id: UUID, principal_id: UUID) -> Principal:
        """
        Deactivate a principal. The row is kept; its admin slot is released.

        Allowed for SUPER_ADMIN actors, and for admins acting on principals
        inside their own scope. Idempotent.
        """
        actor = self._require_active_actor(actor_id)
        with self.store.transaction() as session:
            row, role_name = self._load_for_update(session, principal_id)
            if not self._can_administer(actor, row):
                raise PermissionDeniedError(
                    f"Principal {actor_id} may not deactivate {principal_id}",
                )
            if row.is_active:
                row.is_active = False
                row.admin_slot = None
                row.deactivated_at = datetime.now(timezone.utc)
                session.flush()
                logger.info("Principal deactivated: %s by %s", principal_id, actor_id)
            return principal_from_row(row, role_name)

    def assign_role(
        self,
        actor_id: UUID,
        principal_id: UUID,
        role_name: RoleName,
        scope_code: str | None = None,
    ) -> Principal:
        """
        Change a principal's role. Only active SUPER_ADMIN actors may do this.

        For barangay-level roles ``scope_code`` defaults to the principal's
        current barangay.

        Raises:
            PermissionDeniedError: Actor is not an active SUPER_ADMIN.
            ConflictError: The target barangay already has an active admin.
        """
        actor = self._require_active_actor(actor_id)
        if actor.role is not RoleName.SUPER_ADMIN:
            raise PermissionDeniedError(
                f"Only a super admin may change roles (actor {actor_id} is {actor.role.value})",
            )

        try:
            with self.store.transaction() as session:
                role = self.store.require_roles(session, role_name)[role_name]
                row, _ = self._load_for_update(session, principal_id)
                if scope_code is None and role.scope_level is GeoLevel.BARANGAY:
                    scope_code = row.barangay_code
                scope_code = self._check_scope(role, scope_code)

                is_barangay_role = role.scope_level is GeoLevel.BARANGAY
                row.role_id = role.id
                row.scope_code = scope_code
                row.barangay_code = scope_code if is_barangay_role else None
                row.admin_slot = (
                    scope_code
                    if role.name is RoleName.BARANGAY_ADMIN and row.is_active
                    else None
                )
                session.flush()
                logger.info(
                    "Role changed: principal=%s role=%s scope=%s by %s",
                    principal_id, role.name.value, scope_code, actor_id,
                )
                return principal_from_row(row, role.name)
        except IntegrityError as exc:
            raise ConflictError(
                f"Barangay {scope_code} already has an active administrator",
                barangay_code=scope_code,
            ) from exc

    def _require_active_actor(self, actor_id: UUID) -> Principal:
        actor = self.get_principal(actor_id)
        if actor is None:
            raise NotFoundError(f"Unknown principal: {actor_id}")
        if not actor.is_active:
            raise PermissionDeniedError(f"Principal {actor_id} is inactive")
        return actor

    def _can_administer(self, actor: Principal, target: PrincipalDB) -> bool:
        if actor.role is RoleName.SUPER_ADMIN:
            return True
        if actor.role in (RoleName.RESIDENT, RoleName.CLERK) or actor.scope_code is None:
            return False
        if target.scope_code is None:
            return False
        return self.catalogs.get().is_within(target.scope_code, actor.scope_code)

    def _check_scope(self, role: Role, scope_code: str | None) -> str | None:
        if role.scope_level is None:
            return None
        if scope_code is None:
            raise InvalidGeoCodeError(
                f"Role {role.name.value} needs a {role.scope_level.value} scope code",
            )
        self.catalogs.get().require(scope_code, role.scope_level)
        return scope_code

    @staticmethod
    def _load_for_update(session: Session, principal_id: UUID) -> tuple[PrincipalDB, RoleName]:
        row = session.execute(
            select(PrincipalDB, RoleDB.name)
            .join(RoleDB, PrincipalDB.role_id == RoleDB.id)
            .where(PrincipalDB.id == principal_id)
            .with_for_update(of=PrincipalDB)
        ).one_or_none()
        if row is None:
            raise NotFoundError(f"Unknown principal: {principal_id}")
        return row[0], RoleName(row[1])


def principal_from_row(row: PrincipalDB, role_name: str | RoleName) -> Principal:
    return Principal(
        id=row.id,
        external_identity_id=row.external_identity_id,
        role_id=row.role_id,
        role=RoleName(role_name),
        scope_code=row.scope_code,
        barangay_code=row.barangay_code,
        is_active=row.is_active,
        created_at=row.created_at,
        deactivated_at=row.deactivated_at,
    )
