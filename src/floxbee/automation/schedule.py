"""One-shot scheduled broadcasts.

A schedule rule fires once, after ``schedule_at``, to every active contact of
the tenant (optionally only those tagged ``target_tag``). Every contact gets
its own ledger row, but the rule counts as run as soon as any row exists.
A run interrupted mid-batch is therefore not resumed: the remaining contacts
are not messaged by later sweeps.
"""

from __future__ import annotations

from datetime import datetime

from psycopg2.extensions import cursor as PgCursor

from floxbee.automation import ledger
from floxbee.automation.models import DeliveryRequest
from floxbee.domain.errors import DataError
from floxbee.domain.templates import contact_variables, render, resolve_body
from floxbee.domain.triggers import ScheduleTrigger, parse_trigger_config
from floxbee.infra.repositories.contacts_repository import list_active_contacts
from floxbee.infra.repositories.rules_repository import AutomationRule
from floxbee.infra.tenants import Tenant
from floxbee.infra.time import ensure_aware
from floxbee.observability.logging import get_logger
from floxbee.observability.redaction import safe_log_context

logger = get_logger(__name__)

DEDUPE_KEY = "schedule"


def evaluate(
    cur: PgCursor,
    tenant: Tenant,
    rule: AutomationRule,
    now: datetime,
) -> list[DeliveryRequest]:
    config = parse_trigger_config(rule.trigger_config, rule.trigger_type)
    if not isinstance(config, ScheduleTrigger):
        raise DataError(f"rule {rule.id} is not a schedule rule")

    if ensure_aware(now) < config.schedule_at:
        return []
    if ledger.rule_has_fired(cur, rule.id):
        return []

    body_template = resolve_body(rule.message, rule.template_body, "schedule")
    if not body_template.strip():
        raise DataError(f"schedule rule {rule.id} has no message")

    contacts = list_active_contacts(cur, tenant.id, tag=config.target_tag)
    requests = [
        DeliveryRequest(
            rule_id=rule.id,
            contact_id=contact.id,
            recipient=contact.phone,
            body=render(body_template, contact_variables(contact)),
            dedupe_key=DEDUPE_KEY,
            details={"trigger": "schedule", "target_tag": config.target_tag},
        )
        for contact in contacts
        if contact.phone
        and (config.target_tag is None or config.target_tag in contact.tags)
    ]

    logger.info(
        "schedule rule evaluated",
        extra={
            "extra_fields": safe_log_context(
                rule_id=rule.id,
                has_target_tag=config.target_tag is not None,
                requests=len(requests),
            )
        },
    )
    return requests
