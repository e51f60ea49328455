"""Idempotency ledger over automation_logs and ticket_notification_log.

A row for (rule, contact) inside the relevant window is the only proof that
a trigger already fired. Evaluators check before building a request; the
write relies on partial unique indexes:

- automation_logs (rule_id, contact_id, dedupe_key) where contact_id is set
- automation_logs (rule_id, dedupe_key) where contact_id is NULL
  (rule-level configuration-error audit rows)
- ticket_notification_log (setting_id, recipient_id, history_id)

A conflicting insert means a concurrent run already recorded the event and
raises DuplicateSuppressed, which callers treat as "already fired".

Rule-level rows (contact_id NULL) are audit only; none of the checks below
count them.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any, Literal

from psycopg2.extensions import cursor as PgCursor

from floxbee.domain.errors import DuplicateSuppressed
from floxbee.infra.db import fetchone

LedgerStatus = Literal["success", "error"]


def has_fired(
    cur: PgCursor,
    rule_id: str,
    contact_id: str,
    *,
    conversation_id: str | None = None,
    window_start: datetime | None = None,
    dedupe_key: str | None = None,
) -> bool:
    """Any ledger row for (rule, contact[, conversation][, key]) since window_start."""
    row = fetchone(
        cur,
        """
        SELECT 1 FROM automation_logs
        WHERE rule_id = %s
          AND contact_id = %s
          AND (%s::uuid IS NULL OR conversation_id = %s::uuid)
          AND (%s::timestamptz IS NULL OR created_at >= %s::timestamptz)
          AND (%s::text IS NULL OR dedupe_key = %s::text)
        LIMIT 1
        """,
        (
            rule_id,
            contact_id,
            conversation_id,
            conversation_id,
            window_start,
            window_start,
            dedupe_key,
            dedupe_key,
        ),
    )
    return row is not None


def count_attempts(cur: PgCursor, rule_id: str, conversation_id: str) -> int:
    row = fetchone(
        cur,
        """
        SELECT COUNT(*) FROM automation_logs
        WHERE rule_id = %s AND conversation_id = %s AND contact_id IS NOT NULL
        """,
        (rule_id, conversation_id),
    )
    return int(row[0]) if row else 0


def last_attempt_at(cur: PgCursor, rule_id: str, conversation_id: str) -> datetime | None:
    row = fetchone(
        cur,
        """
        SELECT MAX(created_at) FROM automation_logs
        WHERE rule_id = %s AND conversation_id = %s AND contact_id IS NOT NULL
        """,
        (rule_id, conversation_id),
    )
    return row[0] if row else None


def rule_has_fired(cur: PgCursor, rule_id: str) -> bool:
    """Whether any per-contact row exists for the rule."""
    row = fetchone(
        cur,
        "SELECT 1 FROM automation_logs WHERE rule_id = %s AND contact_id IS NOT NULL LIMIT 1",
        (rule_id,),
    )
    return row is not None


def record(
    cur: PgCursor,
    *,
    owner_id: str,
    rule_id: str,
    contact_id: str,
    status: LedgerStatus,
    dedupe_key: str,
    now: datetime,
    conversation_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> str:
    """Insert a per-contact ledger row. Returns its id.

    Raises:
        DuplicateSuppressed: The row already exists.
    """
    cur.execute(
        """
        INSERT INTO automation_logs (
            owner_id, rule_id, contact_id, conversation_id,
            status, details, dedupe_key, created_at
        )
        VALUES (%s, %s, %s, %s, %s, %s::jsonb, %s, %s)
        ON CONFLICT (rule_id, contact_id, dedupe_key)
            WHERE contact_id IS NOT NULL AND dedupe_key IS NOT NULL
        DO NOTHING
        RETURNING id
        """,
        (
            owner_id,
            rule_id,
            contact_id,
            conversation_id,
            status,
            json.dumps(details or {}),
            dedupe_key,
            now,
        ),
    )
    row = cur.fetchone()
    if row is None:
        raise DuplicateSuppressed(rule_id, dedupe_key)
    return str(row[0])


def record_configuration_error(
    cur: PgCursor,
    *,
    owner_id: str,
    rule_id: str,
    reason: str,
    integration_type: str,
    day: date,
    now: datetime,
) -> bool:
    """Audit a rule skipped for missing/inactive credentials, once per day.

    Returns False when today's row already exists.
    """
    cur.execute(
        """
        INSERT INTO automation_logs (
            owner_id, rule_id, contact_id, status, details, dedupe_key, created_at
        )
        VALUES (%s, %s, NULL, 'error', %s::jsonb, %s, %s)
        ON CONFLICT (rule_id, dedupe_key) WHERE contact_id IS NULL
        DO NOTHING
        """,
        (
            owner_id,
            rule_id,
            json.dumps(
                {
                    "error": "configuration_error",
                    "reason": reason,
                    "integration_type": integration_type,
                }
            ),
            f"config:{day.isoformat()}",
            now,
        ),
    )
    return cur.rowcount > 0


def has_notified(cur: PgCursor, setting_id: str, recipient_id: str, history_id: str) -> bool:
    row = fetchone(
        cur,
        """
        SELECT 1 FROM ticket_notification_log
        WHERE setting_id = %s AND recipient_id = %s AND history_id = %s
        """,
        (setting_id, recipient_id, history_id),
    )
    return row is not None


def record_notification(
    cur: PgCursor,
    *,
    owner_id: str,
    ticket_id: str,
    setting_id: str,
    recipient_id: str,
    history_id: str,
    event: str,
    message: str,
    status: LedgerStatus,
    now: datetime,
    error: str | None = None,
) -> str:
    """Insert a ticket notification ledger row.

    Raises:
        DuplicateSuppressed: Already recorded for this setting, recipient and transition.
    """
    cur.execute(
        """
        INSERT INTO ticket_notification_log (
            owner_id, ticket_id, setting_id, recipient_id, history_id,
            event, message, status, error, sent_at
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (setting_id, recipient_id, history_id) DO NOTHING
        RETURNING id
        """,
        (
            owner_id,
            ticket_id,
            setting_id,
            recipient_id,
            history_id,
            event,
            message,
            status,
            error,
            now if status == "success" else None,
        ),
    )
    row = cur.fetchone()
    if row is None:
        raise DuplicateSuppressed(setting_id, f"{recipient_id}:{history_id}")
    return str(row[0])
