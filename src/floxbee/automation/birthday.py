"""Birthday greetings.

A contact is greeted when its birth month/day equals the tenant-local date.
Contacts born on Feb 29 are greeted on Feb 28 in non-leap years. One
greeting per rule, contact and local day.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime

from psycopg2.extensions import cursor as PgCursor

from floxbee.automation import ledger
from floxbee.automation.models import DeliveryRequest
from floxbee.domain.errors import DataError
from floxbee.domain.templates import contact_variables, render, resolve_body
from floxbee.domain.triggers import BirthdayTrigger, parse_trigger_config
from floxbee.infra.repositories.contacts_repository import list_birthday_contacts
from floxbee.infra.repositories.rules_repository import AutomationRule
from floxbee.infra.tenants import Tenant
from floxbee.infra.time import local_date, local_day_start
from floxbee.observability.logging import get_logger
from floxbee.observability.redaction import safe_log_context

logger = get_logger(__name__)


def _is_leap_day_substitute(today: date) -> bool:
    return today.month == 2 and today.day == 28 and not calendar.isleap(today.year)


def is_birthday(birth_date: date | None, today: date) -> bool:
    if birth_date is None:
        return False
    if (birth_date.month, birth_date.day) == (today.month, today.day):
        return True
    return (birth_date.month, birth_date.day) == (2, 29) and _is_leap_day_substitute(today)


def evaluate(
    cur: PgCursor,
    tenant: Tenant,
    rule: AutomationRule,
    now: datetime,
) -> list[DeliveryRequest]:
    config = parse_trigger_config(rule.trigger_config, rule.trigger_type)
    if not isinstance(config, BirthdayTrigger):
        raise DataError(f"rule {rule.id} is not a birthday rule")

    tz = tenant.config.tz
    today = local_date(now, tz)
    window_start = local_day_start(now, tz)

    contacts = list_birthday_contacts(
        cur,
        tenant.id,
        month=today.month,
        day=today.day,
        include_leap_day=_is_leap_day_substitute(today),
    )
    body_template = resolve_body(rule.message, rule.template_body, "birthday")

    requests: list[DeliveryRequest] = []
    for contact in contacts:
        if not contact.active or not is_birthday(contact.birth_date, today):
            continue
        if not contact.phone:
            logger.info(
                "birthday contact has no phone",
                extra={"extra_fields": safe_log_context(rule_id=rule.id, contact_id=contact.id)},
            )
            continue
        if ledger.has_fired(cur, rule.id, contact.id, window_start=window_start):
            continue
        requests.append(
            DeliveryRequest(
                rule_id=rule.id,
                contact_id=contact.id,
                recipient=contact.phone,
                body=render(body_template, contact_variables(contact)),
                dedupe_key=f"day:{today.isoformat()}",
                details={"trigger": "birthday", "local_date": today.isoformat()},
            )
        )

    logger.info(
        "birthday rule evaluated",
        extra={
            "extra_fields": safe_log_context(
                rule_id=rule.id,
                local_date=today.isoformat(),
                candidates=len(contacts),
                requests=len(requests),
            )
        },
    )
    return requests
