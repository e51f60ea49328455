"""Contacts repository - read access for automation candidates.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from psycopg2.extensions import cursor as PgCursor

CONTACT_COLUMNS = """
    c.id, c.owner_id, c.name, c.phone, c.email, c.registration,
    c.department, c.tags, c.birth_date, c.active
"""


@dataclass(frozen=True)
class Contact:
    id: str
    owner_id: str
    name: str
    phone: str | None = field(default=None, repr=False)
    email: str | None = field(default=None, repr=False)
    registration: str | None = None
    department: str | None = None
    tags: tuple[str, ...] = ()
    birth_date: date | None = None
    active: bool = True


def row_to_contact(row: tuple, offset: int = 0) -> Contact:
    """Map CONTACT_COLUMNS starting at `offset` in a row."""
    r = row[offset : offset + 10]
    return Contact(
        id=str(r[0]),
        owner_id=str(r[1]),
        name=r[2] or "",
        phone=r[3],
        email=r[4],
        registration=r[5],
        department=r[6],
        tags=tuple(r[7] or ()),
        birth_date=r[8],
        active=bool(r[9]),
    )


def get_contact(cur: PgCursor, contact_id: str) -> Contact | None:
    cur.execute(
        f"SELECT {CONTACT_COLUMNS} FROM contacts c WHERE c.id = %s",
        (contact_id,),
    )
    row = cur.fetchone()
    return row_to_contact(row) if row else None


def list_birthday_contacts(
    cur: PgCursor,
    owner_id: str,
    *,
    month: int,
    day: int,
    include_leap_day: bool = False,
) -> list[Contact]:
    """Active contacts born on month/day.

    include_leap_day also returns Feb 29 birthdays (used on Feb 28 of
    non-leap years).
    """
    cur.execute(
        f"""
        SELECT {CONTACT_COLUMNS}
        FROM contacts c
        WHERE c.owner_id = %s
          AND c.active
          AND c.birth_date IS NOT NULL
          AND (
            (EXTRACT(MONTH FROM c.birth_date) = %s AND EXTRACT(DAY FROM c.birth_date) = %s)
            OR (%s AND EXTRACT(MONTH FROM c.birth_date) = 2 AND EXTRACT(DAY FROM c.birth_date) = 29)
          )
        ORDER BY c.name, c.id
        """,
        (owner_id, month, day, include_leap_day),
    )
    return [row_to_contact(row) for row in cur.fetchall()]


def list_active_contacts(
    cur: PgCursor,
    owner_id: str,
    *,
    tag: str | None = None,
) -> list[Contact]:
    """Active contacts of a tenant, optionally only those carrying `tag`."""
    cur.execute(
        f"""
        SELECT {CONTACT_COLUMNS}
        FROM contacts c
        WHERE c.owner_id = %s
          AND c.active
          AND (%s::text IS NULL OR %s = ANY(c.tags))
        ORDER BY c.name, c.id
        """,
        (owner_id, tag, tag),
    )
    return [row_to_contact(row) for row in cur.fetchall()]
