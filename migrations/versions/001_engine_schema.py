"""Automation engine and SLA manager schema.

Rules, templates, the automation ledger, tickets with their append-only
history, and ticket notification settings and log.

Revision ID: 001_engine_schema
Revises:
Create Date: 2026-10-17
"""
from __future__ import annotations

from pathlib import Path

from alembic import op

revision = "001_engine_schema"
down_revision = None
branch_labels = None
depends_on = None

_SQL_FILE = Path(__file__).resolve().parent.parent / "sql" / "001_engine_schema.sql"


def upgrade() -> None:
    op.execute(_SQL_FILE.read_text())


def downgrade() -> None:
    # Shared dashboard tables are left in place.
    op.execute(
        """
        DROP TABLE IF EXISTS ticket_notification_log;
        DROP TABLE IF EXISTS ticket_notification_settings;
        DROP TRIGGER IF EXISTS trg_ticket_history_append_only ON ticket_history;
        DROP FUNCTION IF EXISTS ticket_history_append_only();
        DROP TABLE IF EXISTS ticket_history;
        DROP TABLE IF EXISTS tickets;
        DROP TABLE IF EXISTS automation_logs;
        DROP TABLE IF EXISTS automation_rules;
        DROP TABLE IF EXISTS message_templates;
        """
    )
