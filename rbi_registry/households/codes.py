"""
Hierarchical Code Generator — per-barangay household sequences.

Codes have the form ``<barangay_code>-<sequence>``, the sequence zero-padded
to a configurable width (``042114014-0001``). The barangay prefix makes codes
globally unique once sequences are unique within a barangay.

Sequences come from one counter row per barangay, advanced by a single atomic
upsert-and-return statement executed inside the caller's household insert
transaction:

    INSERT INTO household_counters (barangay_code, last_sequence) VALUES (:b, 1)
    ON CONFLICT (barangay_code)
    DO UPDATE SET last_sequence = household_counters.last_sequence + 1
    RETURNING last_sequence

The counter is never read in one transaction and written in another. If the
household insert fails, the increment rolls back with it; sequence numbers
from committed households are unique and increasing, never reused.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy import case, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from rbi_registry.errors import ConfigurationError
from rbi_registry.store.models import HouseholdCounterDB

logger = logging.getLogger(__name__)

DEFAULT_SEQUENCE_WIDTH = 4

HOUSEHOLD_CODE_PATTERN = re.compile(r"^(?P<barangay>\d{9,10})-(?P<sequence>\d+)$")

_SEQUENCE_PATTERN = re.compile(r"[0-9]+")

_UPSERT_DIALECTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _upsert_for(session: Session):
    dialect = session.get_bind().dialect.name
    insert = _UPSERT_DIALECTS.get(dialect)
    if insert is None:
        raise ConfigurationError(
            f"No atomic counter upsert for database dialect {dialect!r}",
        )
    return insert


def format_household_code(
    barangay_code: str,
    sequence_number: int,
    width: int = DEFAULT_SEQUENCE_WIDTH,
) -> str:
    """Build a code. Sequences wider than ``width`` are kept whole, never truncated."""
    if sequence_number < 1:
        raise ValueError(f"Sequence numbers start at 1 (got {sequence_number})")
    return f"{barangay_code}-{sequence_number:0{width}d}"


def parse_household_code(code: str, barangay_code: str | None = None) -> tuple[str, int] | None:
    """
    Split a canonical code into ``(barangay_code, sequence_number)``; None if legacy.

    With ``barangay_code`` the code must be that barangay's prefix, a hyphen
    and a positive decimal sequence, whatever the barangay code looks like.
    Without it, the prefix must be a 9 or 10 digit PSGC barangay code.
    """
    if barangay_code is None:
        match = HOUSEHOLD_CODE_PATTERN.match(code)
        if match is None:
            return None
        barangay_code, sequence = match.group("barangay"), match.group("sequence")
    else:
        prefix, _, sequence = code.rpartition("-")
        if prefix != barangay_code or not _SEQUENCE_PATTERN.fullmatch(sequence):
            return None

    if int(sequence) < 1:
        return None
    return barangay_code, int(sequence)


def is_hierarchical_code(code: str, barangay_code: str | None = None) -> bool:
    return parse_household_code(code, barangay_code) is not None


class HouseholdCodeGenerator:
    """Allocates household sequence numbers and formats their codes."""

    def __init__(self, width: int = DEFAULT_SEQUENCE_WIDTH) -> None:
        self.width = width

    def next_sequence(self, session: Session, barangay_code: str) -> int:
        """
        Atomically advance and return the barangay's counter.

        Must be called inside the transaction that inserts the household.
        """
        stmt = _upsert_for(session)(HouseholdCounterDB).values(
            barangay_code=barangay_code, last_sequence=1,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[HouseholdCounterDB.barangay_code],
            set_={
                "last_sequence": HouseholdCounterDB.last_sequence + 1,
                "updated_at": func.now(),
            },
        ).returning(HouseholdCounterDB.last_sequence)

        sequence = session.execute(stmt).scalar_one()
        logger.debug("Barangay %s sequence advanced to %d", barangay_code, sequence)
        return sequence

    def next_household_code(self, session: Session, barangay_code: str) -> tuple[str, int]:
        """Allocate the next sequence and return ``(code, sequence_number)``."""
        sequence = self.next_sequence(session, barangay_code)
        return self.format(barangay_code, sequence), sequence

    def format(self, barangay_code: str, sequence_number: int) -> str:
        return format_household_code(barangay_code, sequence_number, self.width)

    @staticmethod
    def current_sequence(session: Session, barangay_code: str) -> int:
        """Last allocated sequence for the barangay (0 if none)."""
        return session.execute(
            select(HouseholdCounterDB.last_sequence)
            .where(HouseholdCounterDB.barangay_code == barangay_code)
        ).scalar_one_or_none() or 0

    def raise_floor(self, session: Session, barangay_code: str, floor: int) -> None:
        """
        Make sure the counter is at least ``floor``, creating it if needed.

        Used when adopting rows whose sequence was assigned elsewhere, so the
        next allocation cannot reuse one of their numbers.
        """
        if floor < 1:
            return
        stmt = _upsert_for(session)(HouseholdCounterDB).values(
            barangay_code=barangay_code, last_sequence=floor,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[HouseholdCounterDB.barangay_code],
            set_={
                "last_sequence": case(
                    (HouseholdCounterDB.last_sequence < floor, floor),
                    else_=HouseholdCounterDB.last_sequence,
                ),
            },
        )
        session.execute(stmt)
