"""Welcome messages, driven by contact events.

Events: ``new_contact`` (contact created), ``first_message`` (first inbound
message of a conversation) and ``keyword`` (inbound text). The first active
rule of the same trigger type, in creation order, is selected; keyword rules
also need the text to contain one of their keywords. A rule greets a contact
at most once, ever.
"""

from __future__ import annotations

from datetime import datetime

from psycopg2.extensions import cursor as PgCursor

from floxbee.automation import ledger
from floxbee.automation.models import DeliveryRequest
from floxbee.domain.errors import DataError
from floxbee.domain.templates import contact_variables, render, resolve_body
from floxbee.domain.triggers import KeywordTrigger, parse_trigger_config
from floxbee.infra.repositories import rules_repository
from floxbee.infra.repositories.contacts_repository import Contact
from floxbee.infra.repositories.rules_repository import AutomationRule
from floxbee.infra.tenants import Tenant
from floxbee.observability.logging import get_logger
from floxbee.observability.redaction import safe_log_context

logger = get_logger(__name__)

EVENT_TYPES = ("new_contact", "first_message", "keyword")
DEDUPE_KEY = "once"


def _candidate_rules(
    cur: PgCursor,
    tenant: Tenant,
    event_type: str,
    rule_id: str | None,
) -> list[AutomationRule]:
    if rule_id is None:
        return rules_repository.list_active_rules(cur, tenant.id, event_type)
    rule = rules_repository.get_rule(cur, rule_id)
    if rule is None or rule.owner_id != tenant.id or not rule.active:
        return []
    return [rule]


def select_rule(
    cur: PgCursor,
    tenant: Tenant,
    event_type: str,
    *,
    rule_id: str | None = None,
    text: str | None = None,
) -> AutomationRule | None:
    """First active rule whose trigger type equals the event type."""
    for rule in _candidate_rules(cur, tenant, event_type, rule_id):
        try:
            config = parse_trigger_config(rule.trigger_config, rule.trigger_type)
        except DataError as e:
            logger.warning(
                "skipping welcome rule with invalid config",
                extra={"extra_fields": safe_log_context(rule_id=rule.id, error=str(e))},
            )
            continue
        if config.type != event_type:
            continue
        if isinstance(config, KeywordTrigger) and text is not None and not config.matches(text):
            continue
        return rule
    return None


def evaluate_event(
    cur: PgCursor,
    tenant: Tenant,
    contact: Contact,
    event_type: str,
    *,
    now: datetime,
    conversation_id: str | None = None,
    rule_id: str | None = None,
    text: str | None = None,
) -> tuple[AutomationRule | None, list[DeliveryRequest]]:
    """Select the welcome rule for an event and build its request, if any.

    Raises:
        DataError: Unknown event type.
    """
    if event_type not in EVENT_TYPES:
        raise DataError(f"unsupported welcome event: {event_type}")

    rule = select_rule(cur, tenant, event_type, rule_id=rule_id, text=text)
    if rule is None:
        return None, []
    if not contact.active or not contact.phone:
        return rule, []
    if ledger.has_fired(cur, rule.id, contact.id):
        logger.info(
            "welcome already sent",
            extra={"extra_fields": safe_log_context(rule_id=rule.id, contact_id=contact.id)},
        )
        return rule, []

    body_template = resolve_body(rule.message, rule.template_body, event_type)
    request = DeliveryRequest(
        rule_id=rule.id,
        contact_id=contact.id,
        recipient=contact.phone,
        body=render(body_template, contact_variables(contact)),
        dedupe_key=DEDUPE_KEY,
        conversation_id=conversation_id,
        details={"trigger": event_type, "evaluated_at": now.isoformat()},
    )
    return rule, [request]
