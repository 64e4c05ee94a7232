"""
Registry error taxonomy.

Components raise these typed exceptions; the registry facade turns them into
explicit ``Outcome`` values for callers. Access denials are never raised: they
are ordinary ``AccessGrant`` results.
"""

from __future__ import annotations

import enum
from typing import Any


class ErrorKind(str, enum.Enum):
    """Typed failure reasons surfaced at the registry boundary."""

    CONFIGURATION_ERROR = "configuration_error"
    CONFLICT = "conflict"
    TRANSIENT_STORE_ERROR = "transient_store_error"
    INVALID_GEO_CODE = "invalid_geo_code"
    NOT_FOUND = "not_found"
    ACCESS_DENIED = "access_denied"
    PERMISSION_DENIED = "permission_denied"
    INVALID_INPUT = "invalid_input"


class RegistryError(Exception):
    """Base class for all registry failures."""

    kind: ErrorKind = ErrorKind.CONFIGURATION_ERROR

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class ConfigurationError(RegistryError):
    """Required role definitions or catalog entries are missing. Fatal."""

    kind = ErrorKind.CONFIGURATION_ERROR


class ConflictError(RegistryError):
    """A uniqueness rule was violated (duplicate identity, taken admin slot)."""

    kind = ErrorKind.CONFLICT

    def __init__(self, message: str, existing: Any = None, **context: Any) -> None:
        super().__init__(message, **context)
        self.existing = existing


class TransientStoreError(RegistryError):
    """Connectivity or timeout failure against the store; retry with backoff."""

    kind = ErrorKind.TRANSIENT_STORE_ERROR


class InvalidGeoCodeError(RegistryError):
    """A supplied geographic code does not exist at the required level."""

    kind = ErrorKind.INVALID_GEO_CODE


class NotFoundError(RegistryError):
    kind = ErrorKind.NOT_FOUND


class PermissionDeniedError(RegistryError):
    """A privileged administrative action was attempted by a non-privileged actor."""

    kind = ErrorKind.PERMISSION_DENIED


class InvalidInputError(RegistryError):
    """A role or operation name outside the known set."""

    kind = ErrorKind.INVALID_INPUT


class CatalogIntegrityError(ConfigurationError):
    """The geographic hierarchy violates its tree invariants."""
