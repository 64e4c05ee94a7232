"""
Registry Store Service — engine, sessions and transaction boundaries.

Every component writes through ``RegistryStore.transaction()``: one
transaction per operation, committed on success and rolled back on any
exception, so an aborted request never leaves a partial principal or
household visible to other transactions.

Connectivity failures are translated into ``TransientStoreError`` here and
propagated; nothing in this module retries.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event, func, select
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from rbi_registry.errors import ConfigurationError, TransientStoreError
from rbi_registry.schema import (
    DEFAULT_ROLES,
    GeographicUnit,
    Role,
    RoleName,
)
from rbi_registry.store.models import Base, GeographicUnitDB, RoleDB

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class RegistryStore:
    """
    The shared relational store behind every registry component.

    Usage:
        store = RegistryStore(settings.database_url_sync)
        store.initialize()  # Create tables, seed the role catalog

        with store.transaction() as session:
            session.add(...)
    """

    def __init__(self, database_url: str, sqlite_busy_timeout: float = 30.0) -> None:
        """
        Initialize the store.

        Args:
            database_url: SQLAlchemy URL (PostgreSQL in production, SQLite locally).
            sqlite_busy_timeout: Seconds a SQLite writer waits for the lock.
        """
        self.database_url = database_url
        self.is_sqlite = database_url.startswith("sqlite")

        connect_args = {}
        if self.is_sqlite:
            connect_args = {"timeout": sqlite_busy_timeout, "check_same_thread": False}

        self.engine = create_engine(database_url, echo=False, connect_args=connect_args)
        if self.is_sqlite:
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def initialize(self) -> None:
        """Create the schema and seed any missing role definitions."""
        Base.metadata.create_all(self.engine)

        with self.transaction() as session:
            existing = set(session.execute(select(RoleDB.name)).scalars().all())
            for role in DEFAULT_ROLES.values():
                if role.name.value in existing:
                    continue
                session.add(
                    RoleDB(
                        name=role.name.value,
                        scope_level=role.scope_level.value if role.scope_level else None,
                        permissions=sorted(op.value for op in role.permissions),
                        description=role.description,
                    )
                )
                logger.info("Seeded role %s", role.name.value)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Open a session inside one transaction.

        Commits when the block exits normally, rolls back on any exception.
        Store connectivity failures surface as ``TransientStoreError``.
        """
        session = self.SessionLocal()
        try:
            with session.begin():
                yield session
        except OperationalError as exc:
            logger.warning("Store operation failed: %s", exc.orig)
            raise TransientStoreError(
                f"Store unavailable: {exc.orig}", statement=exc.statement,
            ) from exc
        except DBAPIError as exc:
            if exc.connection_invalidated:
                raise TransientStoreError(
                    "Store connection lost", statement=exc.statement,
                ) from exc
            raise
        finally:
            session.close()

    # ── Role catalog ────────────────────────────────────────────

    def load_roles(self, session: Session) -> dict[RoleName, Role]:
        """Read the role catalog inside an open transaction."""
        roles: dict[RoleName, Role] = {}
        for row in session.execute(select(RoleDB)).scalars().all():
            try:
                name = RoleName(row.name)
            except ValueError:
                logger.warning("Ignoring unknown role in catalog: %s", row.name)
                continue
            roles[name] = role_from_row(row)
        return roles

    def require_roles(self, session: Session, *names: RoleName) -> dict[RoleName, Role]:
        """
        Load the role catalog and insist the named roles are defined.

        Raises:
            ConfigurationError: If any required role is missing.
        """
        roles = self.load_roles(session)
        missing = [name.value for name in names if name not in roles]
        if missing:
            raise ConfigurationError(
                f"Role catalog is missing required roles: {', '.join(missing)}",
                missing=missing,
            )
        return roles

    # ── Geographic reference data ──────────────────────────────

    def load_geographic_units(self) -> list[GeographicUnit]:
        """Read the full PSGC catalog in one query."""
        with self.transaction() as session:
            rows = session.execute(select(GeographicUnitDB)).scalars().all()
            return [
                GeographicUnit(
                    code=row.code,
                    name=row.name,
                    level=row.level,
                    parent_code=row.parent_code,
                )
                for row in rows
            ]

    def upsert_geographic_units(self, units: Iterable[GeographicUnit]) -> int:
        """
        Insert or update reference units in one transaction.

        This is the out-of-band administrative load path. Units must be
        supplied parents first when the store enforces foreign keys.
        """
        count = 0
        with self.transaction() as session:
            for unit in units:
                row = session.get(GeographicUnitDB, unit.code)
                if row is None:
                    row = GeographicUnitDB(code=unit.code)
                    session.add(row)
                row.name = unit.name
                row.level = unit.level.value
                row.parent_code = unit.parent_code
                session.flush()
                count += 1
        logger.info("Loaded %d geographic units", count)
        return count

    def count_geographic_units(self) -> int:
        with self.transaction() as session:
            return session.execute(
                select(func.count()).select_from(GeographicUnitDB)
            ).scalar() or 0


def role_from_row(row: RoleDB) -> Role:
    return Role(
        id=row.id,
        name=RoleName(row.name),
        scope_level=row.scope_level,
        permissions=frozenset(row.permissions or ()),
        description=row.description or "",
    )
