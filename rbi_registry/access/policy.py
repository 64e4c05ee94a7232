"""
Access Policy Evaluator — geographic scope enforcement for every data access.

Every read or write of a resident or household row passes through
``AccessPolicyEvaluator.authorize`` before the store is touched. The decision
depends only on the principal, the operation, the target row's geographic tag
and the (cached, read-only) catalog, so the same inputs always yield the same
``AccessGrant``.

Rules, first match wins:

1. Inactive principals are denied (PRINCIPAL_INACTIVE).
2. Targets equal to or below the principal's bound unit are in scope
   (WITHIN_SCOPE). Access runs down the hierarchy only, never up or sideways.
   Roles without write permission may still write inside their scope, but
   only rows they own (OWNER_ONLY, ``ownership_required``); the caller checks
   the row's owner field.
3. SUPER_ADMIN reaches every target (GLOBAL_SCOPE).
4. Anything else is denied (OUT_OF_SCOPE), or UNKNOWN_GEO_CODE when the
   target is not in the catalog.

BARANGAY_ADMIN and RESIDENT need no rules of their own: the barangay is the
leaf level, so rule 2 confines them to their own barangay.
"""

from __future__ import annotations

import logging

from rbi_registry.geography.catalog import GeographicCatalog
from rbi_registry.schema import (
    DEFAULT_ROLES,
    AccessGrant,
    AccessReason,
    GeographicUnit,
    GeoLevel,
    Operation,
    Principal,
    Role,
    RoleName,
)

logger = logging.getLogger(__name__)


class AccessPolicyEvaluator:
    """
    Pure access decision function over a geographic catalog.

    The evaluator holds no mutable state. Swap in a new catalog by building a
    new evaluator.
    """

    def __init__(
        self,
        catalog: GeographicCatalog,
        roles: dict[RoleName, Role] | None = None,
    ) -> None:
        """
        Args:
            catalog: The geographic hierarchy to resolve scope against.
            roles: Role definitions. Defaults to the seeded role catalog.
        """
        self.catalog = catalog
        self.roles = roles or dict(DEFAULT_ROLES)

    def authorize(
        self,
        principal: Principal,
        operation: Operation,
        target_geo_code: str,
    ) -> AccessGrant:
        """
        Decide whether ``principal`` may perform ``operation`` on a row
        tagged with ``target_geo_code``.

        Returns:
            AccessGrant with the decision and its reason.
        """
        if not principal.is_active:
            return self._grant(principal, operation, target_geo_code,
                               False, AccessReason.PRINCIPAL_INACTIVE)

        scope_code = principal.scope_code
        if scope_code is not None and self.catalog.is_within(target_geo_code, scope_code):
            role = self.roles.get(principal.role)
            if role is not None and role.can(operation):
                return self._grant(principal, operation, target_geo_code,
                                   True, AccessReason.WITHIN_SCOPE)
            if operation is Operation.WRITE:
                return self._grant(principal, operation, target_geo_code,
                                   True, AccessReason.OWNER_ONLY, ownership_required=True)
            return self._grant(principal, operation, target_geo_code,
                               False, AccessReason.OUT_OF_SCOPE)

        if principal.role is RoleName.SUPER_ADMIN:
            return self._grant(principal, operation, target_geo_code,
                               True, AccessReason.GLOBAL_SCOPE)

        if target_geo_code not in self.catalog:
            return self._grant(principal, operation, target_geo_code,
                               False, AccessReason.UNKNOWN_GEO_CODE)

        return self._grant(principal, operation, target_geo_code,
                           False, AccessReason.OUT_OF_SCOPE)

    def accessible_barangays(self, principal: Principal) -> list[GeographicUnit]:
        """Barangays the principal may read, in code order."""
        if not principal.is_active:
            return []
        if principal.role is RoleName.SUPER_ADMIN:
            return self.catalog.barangays()
        if principal.scope_code is None or principal.scope_code not in self.catalog:
            return []
        unit = self.catalog.get(principal.scope_code)
        if unit.level is GeoLevel.BARANGAY:
            return [unit]
        return self.catalog.descendants(unit.code, GeoLevel.BARANGAY)

    @staticmethod
    def _grant(
        principal: Principal,
        operation: Operation,
        target_geo_code: str,
        allowed: bool,
        reason: AccessReason,
        ownership_required: bool = False,
    ) -> AccessGrant:
        if not allowed:
            logger.debug(
                "Access denied: principal=%s op=%s target=%s reason=%s",
                principal.id, operation.value, target_geo_code, reason.value,
            )
        return AccessGrant(
            allowed=allowed,
            reason=reason,
            principal_id=principal.id,
            operation=operation,
            target_geo_code=target_geo_code,
            ownership_required=ownership_required,
        )
