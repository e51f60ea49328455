"""Follow-ups for conversations where the contact stopped answering.

A conversation qualifies when it is active, its latest human-written message
came from the contact and is at least ``delay_minutes`` old. Each follow-up
is one ledger row; a conversation gets at most ``max_attempts`` of them per
rule, spaced at least ``delay_minutes`` apart. When the tenant enables
business hours, follow-ups wait until the business is open.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from psycopg2.extensions import cursor as PgCursor

from floxbee.automation import ledger
from floxbee.automation.models import DeliveryRequest
from floxbee.domain.errors import DataError
from floxbee.domain.templates import contact_variables, render, resolve_body
from floxbee.domain.triggers import NoResponseTrigger, parse_trigger_config
from floxbee.infra.repositories.conversations_repository import (
    SENDER_CONTACT,
    list_stale_active_conversations,
)
from floxbee.infra.repositories.rules_repository import AutomationRule
from floxbee.infra.tenants import Tenant
from floxbee.infra.time import ensure_aware, minutes_between
from floxbee.observability.logging import get_logger
from floxbee.observability.redaction import safe_log_context

logger = get_logger(__name__)


def evaluate(
    cur: PgCursor,
    tenant: Tenant,
    rule: AutomationRule,
    now: datetime,
) -> list[DeliveryRequest]:
    config = parse_trigger_config(rule.trigger_config, rule.trigger_type)
    if not isinstance(config, NoResponseTrigger):
        raise DataError(f"rule {rule.id} is not a no_response rule")

    if not tenant.config.business_hours.is_open(tenant.local_now(now)):
        logger.info(
            "no-response rule held outside business hours",
            extra={"extra_fields": safe_log_context(rule_id=rule.id)},
        )
        return []

    now = ensure_aware(now)
    cutoff = now - timedelta(minutes=config.delay_minutes)
    body_template = resolve_body(rule.message, rule.template_body, "no_response")

    conversations = list_stale_active_conversations(cur, tenant.id, cutoff=cutoff)
    requests: list[DeliveryRequest] = []
    for conv in conversations:
        # the business already answered, nothing to chase
        if conv.last_sender != SENDER_CONTACT:
            continue
        if minutes_between(conv.last_message_at, now) < config.delay_minutes:
            continue
        if not conv.contact.phone:
            continue

        attempts = ledger.count_attempts(cur, rule.id, conv.conversation_id)
        if attempts >= config.max_attempts:
            continue
        last_attempt = ledger.last_attempt_at(cur, rule.id, conv.conversation_id)
        if last_attempt is not None and minutes_between(last_attempt, now) < config.delay_minutes:
            continue

        attempt = attempts + 1
        requests.append(
            DeliveryRequest(
                rule_id=rule.id,
                contact_id=conv.contact.id,
                recipient=conv.contact.phone,
                body=render(body_template, contact_variables(conv.contact)),
                dedupe_key=f"conversation:{conv.conversation_id}:attempt:{attempt}",
                conversation_id=conv.conversation_id,
                details={
                    "trigger": "no_response",
                    "attempt": attempt,
                    "max_attempts": config.max_attempts,
                },
            )
        )

    logger.info(
        "no-response rule evaluated",
        extra={
            "extra_fields": safe_log_context(
                rule_id=rule.id,
                delay_minutes=config.delay_minutes,
                candidates=len(conversations),
                requests=len(requests),
            )
        },
    )
    return requests
