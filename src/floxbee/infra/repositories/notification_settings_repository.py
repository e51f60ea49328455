"""Ticket notification settings and the profiles they notify."""

from __future__ import annotations

from dataclasses import dataclass, field

from psycopg2.extensions import cursor as PgCursor


@dataclass(frozen=True)
class NotificationSetting:
    id: str
    owner_id: str
    event: str
    status_from: str | None
    status_to: str | None
    notify_creator: bool
    notify_assignee: bool
    message_template: str | None

    def matches(self, event: str, old_status: str | None, new_status: str | None) -> bool:
        """Event must match; a NULL status_from/status_to matches anything."""
        if self.event != event:
            return False
        if self.status_from is not None and self.status_from != old_status:
            return False
        if self.status_to is not None and self.status_to != new_status:
            return False
        return True


@dataclass(frozen=True)
class Profile:
    id: str
    name: str
    phone: str | None = field(default=None, repr=False)
    active: bool = True


def list_active_settings(cur: PgCursor, owner_id: str) -> list[NotificationSetting]:
    cur.execute(
        """
        SELECT id, owner_id, event, status_from, status_to,
               notify_creator, notify_assignee, message_template
        FROM ticket_notification_settings
        WHERE owner_id = %s AND active
        ORDER BY created_at, id
        """,
        (owner_id,),
    )
    return [
        NotificationSetting(
            id=str(row[0]),
            owner_id=str(row[1]),
            event=row[2],
            status_from=row[3],
            status_to=row[4],
            notify_creator=bool(row[5]),
            notify_assignee=bool(row[6]),
            message_template=row[7],
        )
        for row in cur.fetchall()
    ]


def get_profile(cur: PgCursor, profile_id: str) -> Profile | None:
    cur.execute(
        "SELECT id, name, phone, active FROM profiles WHERE id = %s",
        (profile_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return Profile(id=str(row[0]), name=row[1] or "", phone=row[2], active=bool(row[3]))
