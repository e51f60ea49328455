"""Entry points that run evaluators and deliver their requests.

- run_sweep: periodic full sweep of one trigger type over every tenant
  having active rules of that type (birthday, no_response, schedule)
- run_welcome: one contact event
- run_ticket_event: one ticket transition

Reads happen in short transactions, sends happen outside transactions and
every ledger write is its own transaction (see executor). A failing tenant or
rule is logged and counted; its siblings still run. Invoking a sweep again,
or concurrently, is safe: the ledger check plus its unique indexes keep each
event to one ledger row.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Callable

from psycopg2.extensions import cursor as PgCursor

from floxbee.automation import birthday, executor, ledger, no_response, schedule, ticket_status, welcome
from floxbee.automation.models import DeliveryRequest, RuleSummary, SweepSummary
from floxbee.domain.errors import ConfigurationError, DataError, DuplicateSuppressed, NotFoundError
from floxbee.infra.credentials import Credential, resolve_credential
from floxbee.infra.db import txn
from floxbee.infra.repositories import contacts_repository, rules_repository
from floxbee.infra.repositories.rules_repository import AutomationRule
from floxbee.infra.tenants import Tenant, list_tenants_with_rules, resolve_tenant
from floxbee.infra.time import ensure_aware, utc_now
from floxbee.observability.correlation import correlation_scope, tenant_scope
from floxbee.observability.logging import get_logger
from floxbee.observability.redaction import safe_log_context

logger = get_logger(__name__)

Evaluator = Callable[[PgCursor, Tenant, AutomationRule, datetime], list[DeliveryRequest]]

EVALUATORS: dict[str, Evaluator] = {
    "birthday": birthday.evaluate,
    "no_response": no_response.evaluate,
    "schedule": schedule.evaluate,
}


def _run_rule(
    tenant: Tenant,
    rule: AutomationRule,
    evaluate: Evaluator,
    now: datetime,
    correlation_id: str,
) -> RuleSummary:
    try:
        with txn() as cur:
            requests = evaluate(cur, tenant, rule, now)
    except DataError as e:
        logger.warning(
            "rule skipped: invalid configuration",
            extra={"extra_fields": safe_log_context(rule_id=rule.id, error=str(e))},
        )
        return RuleSummary(rule_id=rule.id, skipped_reason="invalid_config")
    except Exception:
        logger.exception(
            "rule evaluation failed",
            extra={"extra_fields": safe_log_context(rule_id=rule.id)},
        )
        return RuleSummary(rule_id=rule.id, skipped_reason="evaluation_failed")

    return executor.deliver(tenant, rule.id, requests, now=now, correlation_id=correlation_id)


def _run_tenant(
    tenant_id: str,
    trigger_type: str,
    evaluate: Evaluator,
    now: datetime,
    correlation_id: str,
) -> list[RuleSummary]:
    with txn() as cur:
        tenant = resolve_tenant(cur, tenant_id)
        rules = rules_repository.list_active_rules(cur, tenant.id, trigger_type)
    return [_run_rule(tenant, rule, evaluate, now, correlation_id) for rule in rules]


def run_sweep(
    trigger_type: str,
    *,
    now: datetime | None = None,
    correlation_id: str | None = None,
) -> SweepSummary:
    """Evaluate and deliver every active rule of a trigger type for all tenants.

    Raises:
        ValueError: Trigger type without a sweep evaluator.
    """
    evaluate = EVALUATORS.get(trigger_type)
    if evaluate is None:
        raise ValueError(f"no sweep for trigger type: {trigger_type}")

    now = ensure_aware(now or utc_now())
    summary = SweepSummary(trigger_type=trigger_type)

    with correlation_scope(correlation_id) as cid:
        with txn() as cur:
            tenant_ids = list_tenants_with_rules(cur, trigger_type)

        for tenant_id in tenant_ids:
            summary.tenants += 1
            with tenant_scope(tenant_id):
                try:
                    summary.rules.extend(_run_tenant(tenant_id, trigger_type, evaluate, now, cid))
                except Exception:
                    summary.tenants_failed += 1
                    logger.exception(
                        "tenant sweep failed",
                        extra={
                            "extra_fields": safe_log_context(
                                tenant_id=tenant_id, trigger_type=trigger_type
                            )
                        },
                    )

        logger.info(
            "automation sweep finished",
            extra={
                "extra_fields": safe_log_context(
                    trigger_type=trigger_type,
                    tenants=summary.tenants,
                    tenants_failed=summary.tenants_failed,
                    sent=summary.sent,
                    failed=summary.failed,
                )
            },
        )
    return summary


def run_welcome(
    contact_id: str,
    event_type: str,
    *,
    conversation_id: str | None = None,
    rule_id: str | None = None,
    text: str | None = None,
    now: datetime | None = None,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    """Handle one contact event.

    Raises:
        NotFoundError: Unknown contact.
        DataError: Unsupported event type.
    """
    now = ensure_aware(now or utc_now())
    with correlation_scope(correlation_id) as cid:
        with txn() as cur:
            contact = contacts_repository.get_contact(cur, contact_id)
            if contact is None:
                raise NotFoundError(f"contact {contact_id} not found")
            tenant = resolve_tenant(cur, contact.owner_id)
            rule, requests = welcome.evaluate_event(
                cur,
                tenant,
                contact,
                event_type,
                now=now,
                conversation_id=conversation_id,
                rule_id=rule_id,
                text=text,
            )

        if rule is None:
            return {"status": "no_rule"}
        if not requests:
            return {"status": "skipped", "rule_id": rule.id}

        with tenant_scope(tenant.id):
            summary = executor.deliver(tenant, rule.id, requests, now=now, correlation_id=cid)
        return {"status": "processed", **summary.as_dict()}


def _resolve_or_none(tenant: Tenant) -> tuple[Credential | None, ConfigurationError | None]:
    try:
        with txn() as cur:
            return resolve_credential(cur, tenant.id, "whatsapp"), None
    except ConfigurationError as e:
        return None, e


def _record_staff(
    tenant: Tenant,
    plan: ticket_status.TicketEventPlan,
    notification: ticket_status.StaffNotification,
    *,
    status: str,
    error: str | None,
    now: datetime,
) -> bool:
    try:
        with txn() as cur:
            ledger.record_notification(
                cur,
                owner_id=tenant.id,
                ticket_id=plan.ticket.id,
                setting_id=notification.setting_id,
                recipient_id=notification.recipient.id,
                history_id=plan.history_id,
                event=plan.event_type,
                message=notification.body,
                status=status,  # type: ignore[arg-type]
                error=error,
                now=now,
            )
    except DuplicateSuppressed:
        return False
    return True


def _notify_staff(
    tenant: Tenant,
    plan: ticket_status.TicketEventPlan,
    credential: Credential | None,
    config_error: ConfigurationError | None,
    now: datetime,
    correlation_id: str,
) -> dict[str, int]:
    counts = {"sent": 0, "failed": 0, "duplicates": 0}
    delay = executor.send_delay_seconds()
    for index, notification in enumerate(plan.staff):
        if credential is None:
            reason = config_error.reason if config_error else "missing"
            recorded = _record_staff(
                tenant,
                plan,
                notification,
                status="error",
                error=f"configuration_error:{reason}",
                now=now,
            )
            counts["failed" if recorded else "duplicates"] += 1
            continue

        if index and delay:
            time.sleep(delay)
        outcome = executor.send_guarded(
            credential,
            notification.recipient.phone or "",
            notification.body,
            correlation_id=correlation_id,
            log_context={"setting_id": notification.setting_id, "ticket_id": plan.ticket.id},
        )
        recorded = _record_staff(
            tenant,
            plan,
            notification,
            status="success" if outcome.ok else "error",
            error=None if outcome.ok else f"{outcome.error_code}: {outcome.error_message}",
            now=now,
        )
        if not recorded:
            counts["duplicates"] += 1
        elif outcome.ok:
            counts["sent"] += 1
        else:
            counts["failed"] += 1
    return counts


def run_ticket_event(
    ticket_id: str,
    event_type: str,
    history_id: str,
    *,
    now: datetime | None = None,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    """Notify staff and the contact about one ticket transition.

    Raises:
        NotFoundError: Unknown ticket.
        DataError: Unknown event type or mismatched history row.
    """
    now = ensure_aware(now or utc_now())
    with correlation_scope(correlation_id) as cid:
        with txn() as cur:
            ticket, history = ticket_status.load_event(cur, ticket_id, history_id)
            tenant = resolve_tenant(cur, ticket.owner_id)
            plan = ticket_status.plan_event(
                cur, tenant, ticket, history, history_id=history_id, event_type=event_type
            )

        if not plan.staff and not plan.contact_requests:
            return {"status": "nothing_to_send"}

        with tenant_scope(tenant.id):
            credential, config_error = _resolve_or_none(tenant)
            staff = _notify_staff(tenant, plan, credential, config_error, now, cid)
            rules = [
                executor.deliver(
                    tenant,
                    rule_id,
                    requests,
                    now=now,
                    correlation_id=cid,
                    credential=credential,
                ).as_dict()
                for rule_id, requests in plan.contact_requests.items()
            ]

        logger.info(
            "ticket event processed",
            extra={
                "extra_fields": safe_log_context(
                    ticket_id=ticket_id,
                    event_type=event_type,
                    staff_sent=staff["sent"],
                    staff_failed=staff["failed"],
                    contact_rules=len(rules),
                )
            },
        )
        return {"status": "processed", "staff": staff, "rules": rules}
