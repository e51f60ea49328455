"""Automation rules repository.

Trigger configuration is validated and normalised on every save. Evaluators
parse it again and skip rules written by other clients that do not parse.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from floxbee.domain.errors import DataError, NotFoundError
from floxbee.domain.triggers import parse_trigger_config, serialize_trigger_config

_RULE_COLUMNS = """
    r.id, r.owner_id, r.name, r.active, r.trigger_type, r.trigger_config,
    r.message, r.template_id, t.body, r.created_at
"""


@dataclass(frozen=True)
class AutomationRule:
    id: str
    owner_id: str
    name: str
    active: bool
    trigger_type: str
    trigger_config: dict[str, Any] = field(default_factory=dict)
    message: str | None = None
    template_id: str | None = None
    template_body: str | None = None
    created_at: datetime | None = None


def _row_to_rule(row: tuple) -> AutomationRule:
    return AutomationRule(
        id=str(row[0]),
        owner_id=str(row[1]),
        name=row[2],
        active=bool(row[3]),
        trigger_type=row[4],
        trigger_config=row[5] if isinstance(row[5], dict) else {},
        message=row[6],
        template_id=str(row[7]) if row[7] else None,
        template_body=row[8],
        created_at=row[9],
    )


def list_active_rules(cur: PgCursor, owner_id: str, trigger_type: str) -> list[AutomationRule]:
    """Active rules of one type for a tenant, in creation order."""
    cur.execute(
        f"""
        SELECT {_RULE_COLUMNS}
        FROM automation_rules r
        LEFT JOIN message_templates t ON t.id = r.template_id
        WHERE r.owner_id = %s AND r.active AND r.trigger_type = %s
        ORDER BY r.created_at, r.id
        """,
        (owner_id, trigger_type),
    )
    return [_row_to_rule(row) for row in cur.fetchall()]


def get_rule(cur: PgCursor, rule_id: str) -> AutomationRule | None:
    cur.execute(
        f"""
        SELECT {_RULE_COLUMNS}
        FROM automation_rules r
        LEFT JOIN message_templates t ON t.id = r.template_id
        WHERE r.id = %s
        """,
        (rule_id,),
    )
    row = cur.fetchone()
    return _row_to_rule(row) if row else None


def _validated_config(raw: Any, trigger_type: str | None = None) -> tuple[str, dict[str, Any]]:
    config = parse_trigger_config(raw, trigger_type)
    return config.type, serialize_trigger_config(config)


def _check_template(cur: PgCursor, owner_id: str, template_id: str | None) -> None:
    if template_id is None:
        return
    cur.execute(
        "SELECT 1 FROM message_templates WHERE id = %s AND owner_id = %s",
        (template_id, owner_id),
    )
    if cur.fetchone() is None:
        raise DataError(f"template {template_id} not found for tenant")


def insert_rule(
    cur: PgCursor,
    *,
    owner_id: str,
    name: str,
    trigger_config: dict[str, Any],
    message: str | None = None,
    template_id: str | None = None,
    active: bool = True,
    now: datetime,
) -> AutomationRule:
    """Validate and insert a rule.

    Raises:
        DataError: Invalid trigger configuration or foreign template.
    """
    if not name or not name.strip():
        raise DataError("name is required")
    trigger_type, config = _validated_config(trigger_config)
    _check_template(cur, owner_id, template_id)

    cur.execute(
        """
        INSERT INTO automation_rules (
            owner_id, name, active, trigger_type, trigger_config,
            message, template_id, created_at, updated_at
        )
        VALUES (%s, %s, %s, %s, %s::jsonb, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            owner_id,
            name.strip(),
            active,
            trigger_type,
            json.dumps(config),
            message,
            template_id,
            now,
            now,
        ),
    )
    rule_id = str(cur.fetchone()[0])
    return get_rule(cur, rule_id)


def update_rule(
    cur: PgCursor,
    rule_id: str,
    *,
    owner_id: str,
    changes: dict[str, Any],
    now: datetime,
) -> AutomationRule:
    """Apply a partial update to a rule of this tenant.

    Raises:
        NotFoundError: Unknown rule for this tenant.
        DataError: Invalid trigger configuration or foreign template.
    """
    current = get_rule(cur, rule_id)
    if current is None or current.owner_id != owner_id:
        raise NotFoundError(f"rule {rule_id} not found")

    set_parts: list[str] = []
    params: list[Any] = []

    if "name" in changes:
        if not changes["name"] or not str(changes["name"]).strip():
            raise DataError("name is required")
        set_parts.append("name = %s")
        params.append(str(changes["name"]).strip())
    if "active" in changes:
        set_parts.append("active = %s")
        params.append(bool(changes["active"]))
    if "message" in changes:
        set_parts.append("message = %s")
        params.append(changes["message"])
    if "template_id" in changes:
        _check_template(cur, owner_id, changes["template_id"])
        set_parts.append("template_id = %s")
        params.append(changes["template_id"])
    if "trigger_config" in changes:
        trigger_type, config = _validated_config(changes["trigger_config"])
        set_parts.extend(["trigger_type = %s", "trigger_config = %s::jsonb"])
        params.extend([trigger_type, json.dumps(config)])

    if not set_parts:
        return current

    set_parts.append("updated_at = %s")
    params.extend([now, rule_id])
    cur.execute(
        f"UPDATE automation_rules SET {', '.join(set_parts)} WHERE id = %s",
        params,
    )
    return get_rule(cur, rule_id)
