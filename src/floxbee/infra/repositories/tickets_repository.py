"""Tickets repository - persistence for tickets and ticket_history.

Uses raw SQL with psycopg2 (no ORM). Status changes go through
floxbee.domain.tickets; nothing else writes to these tables.
ticket_history is append-only (a trigger rejects UPDATE/DELETE).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

_TICKET_COLUMNS = """
    id, number, owner_id, title, description, priority, status,
    sla_deadline, priority_changed_at, assigned_to, contact_id,
    created_by, resolved_at, created_at
"""

# Columns a transition may rewrite.
_UPDATABLE = frozenset(
    {"status", "priority", "assigned_to", "sla_deadline", "priority_changed_at", "resolved_at"}
)


@dataclass(frozen=True)
class Ticket:
    id: str
    number: int
    owner_id: str
    title: str
    description: str | None
    priority: str
    status: str
    sla_deadline: datetime | None
    priority_changed_at: datetime | None
    assigned_to: str | None
    contact_id: str | None
    created_by: str | None
    resolved_at: datetime | None
    created_at: datetime | None


@dataclass(frozen=True)
class HistoryEntry:
    """One ticket_history row: old and new values of a single transition."""

    ticket_id: str
    old_status: str | None
    new_status: str | None
    old_priority: str | None
    new_priority: str | None
    old_assigned_to: str | None
    new_assigned_to: str | None
    note: str | None
    created_by: str | None


def _row_to_ticket(row: tuple) -> Ticket:
    return Ticket(
        id=str(row[0]),
        number=row[1],
        owner_id=str(row[2]),
        title=row[3],
        description=row[4],
        priority=row[5],
        status=row[6],
        sla_deadline=row[7],
        priority_changed_at=row[8],
        assigned_to=str(row[9]) if row[9] else None,
        contact_id=str(row[10]) if row[10] else None,
        created_by=str(row[11]) if row[11] else None,
        resolved_at=row[12],
        created_at=row[13],
    )


def get_ticket(cur: PgCursor, ticket_id: str, *, lock: bool = False) -> Ticket | None:
    """Load a ticket, optionally with FOR UPDATE."""
    query = f"SELECT {_TICKET_COLUMNS} FROM tickets WHERE id = %s"
    if lock:
        query += " FOR UPDATE"
    cur.execute(query, (ticket_id,))
    row = cur.fetchone()
    return _row_to_ticket(row) if row else None


def insert_ticket(
    cur: PgCursor,
    *,
    owner_id: str,
    title: str,
    description: str | None,
    priority: str,
    status: str,
    sla_deadline: datetime,
    assigned_to: str | None,
    contact_id: str | None,
    created_by: str | None,
    now: datetime,
) -> Ticket:
    cur.execute(
        f"""
        INSERT INTO tickets (
            owner_id, title, description, priority, status,
            sla_deadline, priority_changed_at, assigned_to, contact_id,
            created_by, created_at, updated_at
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING {_TICKET_COLUMNS}
        """,
        (
            owner_id,
            title,
            description,
            priority,
            status,
            sla_deadline,
            now,
            assigned_to,
            contact_id,
            created_by,
            now,
            now,
        ),
    )
    return _row_to_ticket(cur.fetchone())


def update_ticket(
    cur: PgCursor,
    ticket_id: str,
    updates: dict[str, Any],
    *,
    now: datetime,
) -> Ticket:
    """Apply column updates planned by the SLA manager.

    Raises:
        ValueError: On a column outside the transition set.
    """
    unknown = set(updates) - _UPDATABLE
    if unknown:
        raise ValueError(f"columns not updatable: {sorted(unknown)}")

    set_parts = [f"{column} = %s" for column in updates]
    params: list[Any] = list(updates.values())
    set_parts.append("updated_at = %s")
    params.append(now)
    params.append(ticket_id)

    cur.execute(
        f"UPDATE tickets SET {', '.join(set_parts)} WHERE id = %s RETURNING {_TICKET_COLUMNS}",
        params,
    )
    return _row_to_ticket(cur.fetchone())


def insert_history(cur: PgCursor, entry: HistoryEntry, *, now: datetime) -> str:
    """Append one history row. Returns its id."""
    cur.execute(
        """
        INSERT INTO ticket_history (
            ticket_id, old_status, new_status, old_priority, new_priority,
            old_assigned_to, new_assigned_to, note, created_by, created_at
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            entry.ticket_id,
            entry.old_status,
            entry.new_status,
            entry.old_priority,
            entry.new_priority,
            entry.old_assigned_to,
            entry.new_assigned_to,
            entry.note,
            entry.created_by,
            now,
        ),
    )
    row = cur.fetchone()
    return str(row[0])


def get_history_entry(cur: PgCursor, history_id: str) -> tuple[HistoryEntry, datetime] | None:
    cur.execute(
        """
        SELECT ticket_id, old_status, new_status, old_priority, new_priority,
               old_assigned_to, new_assigned_to, note, created_by, created_at
        FROM ticket_history
        WHERE id = %s
        """,
        (history_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    entry = HistoryEntry(
        ticket_id=str(row[0]),
        old_status=row[1],
        new_status=row[2],
        old_priority=row[3],
        new_priority=row[4],
        old_assigned_to=str(row[5]) if row[5] else None,
        new_assigned_to=str(row[6]) if row[6] else None,
        note=row[7],
        created_by=str(row[8]) if row[8] else None,
    )
    return entry, row[9]


def list_open_tickets(cur: PgCursor, owner_id: str) -> list[Ticket]:
    """Tickets that still count against their SLA."""
    cur.execute(
        f"""
        SELECT {_TICKET_COLUMNS} FROM tickets
        WHERE owner_id = %s AND status NOT IN ('concluido', 'cancelado')
        ORDER BY sla_deadline NULLS LAST, number
        """,
        (owner_id,),
    )
    return [_row_to_ticket(row) for row in cur.fetchall()]
