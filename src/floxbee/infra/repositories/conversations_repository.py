"""Conversations and transcript messages.

Messages written by the engine carry ``metadata.automation = true`` so the
no-response sweep can tell them apart from messages typed by people.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from floxbee.infra.repositories.contacts_repository import CONTACT_COLUMNS, Contact, row_to_contact

SENDER_CONTACT = "contact"
SENDER_AI = "ia"
SENDER_AGENT = "agent"
SENDER_SYSTEM = "system"


@dataclass(frozen=True)
class AwaitingConversation:
    """An active conversation and its latest human-written message."""

    conversation_id: str
    contact: Contact
    last_message_at: datetime
    last_sender: str


def list_stale_active_conversations(
    cur: PgCursor,
    owner_id: str,
    *,
    cutoff: datetime,
) -> list[AwaitingConversation]:
    """Active conversations whose last non-automated message is older than cutoff."""
    cur.execute(
        f"""
        SELECT conv.id, lm.created_at, lm.sender_type, {CONTACT_COLUMNS}
        FROM conversations conv
        JOIN contacts c ON c.id = conv.contact_id
        JOIN LATERAL (
            SELECT m.created_at, m.sender_type
            FROM messages m
            WHERE m.conversation_id = conv.id
              AND NOT COALESCE((m.metadata ->> 'automation')::boolean, false)
            ORDER BY m.created_at DESC, m.id DESC
            LIMIT 1
        ) lm ON true
        WHERE conv.owner_id = %s
          AND conv.status = 'ativo'
          AND lm.created_at <= %s
        ORDER BY lm.created_at, conv.id
        """,
        (owner_id, cutoff),
    )
    return [
        AwaitingConversation(
            conversation_id=str(row[0]),
            last_message_at=row[1],
            last_sender=row[2],
            contact=row_to_contact(row, offset=3),
        )
        for row in cur.fetchall()
    ]


def latest_conversation_id(cur: PgCursor, contact_id: str) -> str | None:
    cur.execute(
        """
        SELECT id FROM conversations
        WHERE contact_id = %s
        ORDER BY last_message_at DESC NULLS LAST, created_at DESC
        LIMIT 1
        """,
        (contact_id,),
    )
    row = cur.fetchone()
    return str(row[0]) if row else None


def insert_message(
    cur: PgCursor,
    *,
    conversation_id: str,
    content: str,
    sender_type: str,
    metadata: dict[str, Any] | None = None,
    status: str = "sent",
    now: datetime,
) -> str:
    """Append a transcript message. Returns its id."""
    cur.execute(
        """
        INSERT INTO messages (
            conversation_id, content, sender_type, message_type, status, metadata, created_at
        )
        VALUES (%s, %s, %s, 'text', %s, %s::jsonb, %s)
        RETURNING id
        """,
        (conversation_id, content, sender_type, status, json.dumps(metadata or {}), now),
    )
    row = cur.fetchone()
    return str(row[0])


def list_bot_paused_conversations(
    cur: PgCursor,
    owner_id: str,
    *,
    cutoff: datetime,
) -> list[str]:
    """Active conversations held by an agent with no activity since cutoff."""
    cur.execute(
        """
        SELECT id FROM conversations
        WHERE owner_id = %s
          AND status = 'ativo'
          AND NOT is_bot_active
          AND last_message_at <= %s
        ORDER BY last_message_at, id
        """,
        (owner_id, cutoff),
    )
    return [str(row[0]) for row in cur.fetchall()]


def reactivate_bot(cur: PgCursor, conversation_id: str, *, now: datetime) -> bool:
    """Hand a conversation back to the bot. False if it changed meanwhile."""
    cur.execute(
        """
        UPDATE conversations
        SET is_bot_active = true, assigned_to = NULL, updated_at = %s
        WHERE id = %s AND NOT is_bot_active
        """,
        (now, conversation_id),
    )
    return cur.rowcount > 0
