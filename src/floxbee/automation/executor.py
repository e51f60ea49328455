"""Deliver the requests an evaluator produced for one rule.

Order per rule: resolve the tenant credential, then for each request send
(outside any transaction), write the ledger row and the transcript message
in one short transaction, and pause before the next send.

- missing/inactive credential: one rule-level audit row per day, no sends
- provider failure, or a send that raises: an "error" ledger row, next
  request continues
- ledger conflict: counted as duplicate, never as failure
"""

from __future__ import annotations

import os
import time
from datetime import datetime
from typing import Sequence

from floxbee.automation import ledger
from floxbee.automation.models import DeliveryRequest, RuleSummary
from floxbee.domain.errors import ConfigurationError, DuplicateSuppressed
from floxbee.infra.credentials import Credential, resolve_credential
from floxbee.infra.db import txn
from floxbee.infra.repositories import conversations_repository
from floxbee.infra.tenants import Tenant
from floxbee.infra.time import local_date
from floxbee.observability.logging import get_logger
from floxbee.observability.redaction import safe_log_context
from floxbee.whatsapp import dispatcher

logger = get_logger(__name__)

DEFAULT_SEND_DELAY_MS = 250


def send_delay_seconds() -> float:
    raw = os.environ.get("AUTOMATION_SEND_DELAY_MS", "")
    try:
        millis = int(raw) if raw else DEFAULT_SEND_DELAY_MS
    except ValueError:
        millis = DEFAULT_SEND_DELAY_MS
    return max(millis, 0) / 1000.0


def resolve_rule_credential(
    tenant: Tenant,
    rule_id: str,
    *,
    now: datetime,
    summary: RuleSummary,
) -> Credential | None:
    """Resolve the WhatsApp credential or audit why the rule cannot send."""
    try:
        with txn() as cur:
            return resolve_credential(cur, tenant.id, "whatsapp")
    except ConfigurationError as e:
        summary.skipped_reason = f"configuration_error:{e.reason}"
        with txn() as cur:
            recorded = ledger.record_configuration_error(
                cur,
                owner_id=tenant.id,
                rule_id=rule_id,
                reason=e.reason,
                integration_type=e.integration_type,
                day=local_date(now, tenant.config.tz),
                now=now,
            )
        logger.warning(
            "rule skipped: delivery not configured",
            extra={
                "extra_fields": safe_log_context(
                    tenant_id=tenant.id,
                    rule_id=rule_id,
                    reason=e.reason,
                    audit_row_written=recorded,
                )
            },
        )
        return None


def send_guarded(
    credential: Credential,
    recipient: str,
    body: str,
    *,
    template: dispatcher.MessageTemplate | None = None,
    correlation_id: str | None = None,
    log_context: dict | None = None,
) -> dispatcher.DeliveryOutcome:
    """dispatcher.send, with anything it raises turned into a provider_error outcome.

    The message may or may not have left, so the caller still writes an error
    ledger row and the event is not sent again by the next sweep.
    """
    try:
        return dispatcher.send(
            credential,
            recipient,
            body,
            template=template,
            correlation_id=correlation_id,
        )
    except Exception as e:
        logger.exception(
            "send raised, recording as error",
            extra={"extra_fields": safe_log_context(**(log_context or {}))},
        )
        return dispatcher.DeliveryOutcome.provider_error("send_exception", type(e).__name__)


def _write_transcript(cur, request: DeliveryRequest, message_id: str | None, now: datetime) -> None:
    conversation_id = request.conversation_id or conversations_repository.latest_conversation_id(
        cur, request.contact_id
    )
    if conversation_id is None:
        return
    conversations_repository.insert_message(
        cur,
        conversation_id=conversation_id,
        content=request.body,
        sender_type=conversations_repository.SENDER_AI,
        metadata={
            "automation": True,
            "rule_id": request.rule_id,
            "provider_message_id": message_id,
        },
        now=now,
    )


def deliver_one(
    tenant: Tenant,
    credential: Credential,
    request: DeliveryRequest,
    *,
    now: datetime,
    summary: RuleSummary,
    correlation_id: str | None = None,
) -> None:
    """Send one request and record its outcome."""
    outcome = send_guarded(
        credential,
        request.recipient,
        request.body,
        template=request.template,
        correlation_id=correlation_id,
        log_context={"rule_id": request.rule_id, "contact_id": request.contact_id},
    )

    details = dict(request.details)
    if outcome.ok:
        details["message_id"] = outcome.message_id
        details["credential_source"] = credential.source
    else:
        details["error_code"] = outcome.error_code
        details["error"] = outcome.error_message

    try:
        with txn() as cur:
            ledger.record(
                cur,
                owner_id=tenant.id,
                rule_id=request.rule_id,
                contact_id=request.contact_id,
                conversation_id=request.conversation_id,
                status="success" if outcome.ok else "error",
                dedupe_key=request.dedupe_key,
                details=details,
                now=now,
            )
            if outcome.ok and request.transcript:
                _write_transcript(cur, request, outcome.message_id, now)
    except DuplicateSuppressed:
        summary.duplicates += 1
        logger.info(
            "ledger row already present, treating as fired",
            extra={
                "extra_fields": safe_log_context(
                    rule_id=request.rule_id,
                    contact_id=request.contact_id,
                    dedupe_key=request.dedupe_key,
                )
            },
        )
        return

    if outcome.ok:
        summary.sent += 1
    else:
        summary.failed += 1


def deliver(
    tenant: Tenant,
    rule_id: str,
    requests: Sequence[DeliveryRequest],
    *,
    now: datetime,
    correlation_id: str | None = None,
    credential: Credential | None = None,
) -> RuleSummary:
    """Deliver all requests of one rule, one at a time."""
    summary = RuleSummary(rule_id=rule_id, candidates=len(requests))
    if not requests:
        return summary

    if credential is None:
        credential = resolve_rule_credential(tenant, rule_id, now=now, summary=summary)
        if credential is None:
            return summary

    delay = send_delay_seconds()
    for index, request in enumerate(requests):
        if index and delay:
            time.sleep(delay)
        try:
            deliver_one(
                tenant,
                credential,
                request,
                now=now,
                summary=summary,
                correlation_id=correlation_id,
            )
        except Exception:
            summary.failed += 1
            logger.exception(
                "delivery failed",
                extra={
                    "extra_fields": safe_log_context(
                        tenant_id=tenant.id,
                        rule_id=rule_id,
                        contact_id=request.contact_id,
                    )
                },
            )

    logger.info(
        "rule delivered",
        extra={"extra_fields": safe_log_context(tenant_id=tenant.id, **summary.as_dict())},
    )
    return summary
