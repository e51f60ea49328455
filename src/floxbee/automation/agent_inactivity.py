"""Hand idle agent conversations back to the bot.

Tenants opt in with ``tenant_config.ai.agentInactivityTimeoutMinutes``.
An active conversation with the bot paused and no message for that long is
unassigned, the bot is switched back on and a system note is added to the
transcript. Nothing is sent to the contact.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from floxbee.infra.db import txn
from floxbee.infra.repositories import conversations_repository
from floxbee.infra.tenants import list_tenants_with_agent_timeout, resolve_tenant
from floxbee.infra.time import ensure_aware, utc_now
from floxbee.observability.correlation import tenant_scope
from floxbee.observability.logging import get_logger
from floxbee.observability.redaction import safe_log_context

logger = get_logger(__name__)

SYSTEM_NOTE = (
    "[Sistema]: Atendimento devolvido para a IA por inatividade do atendente ({minutes}min)."
)


def reactivate_idle_conversations(tenant_id: str, now: datetime) -> int:
    """Reactivate the bot on idle conversations of one tenant. Returns the count."""
    with txn() as cur:
        tenant = resolve_tenant(cur, tenant_id)
        minutes = tenant.config.ai.agent_inactivity_timeout_minutes
        if minutes <= 0:
            return 0
        cutoff = now - timedelta(minutes=minutes)
        reactivated = 0
        for conversation_id in conversations_repository.list_bot_paused_conversations(
            cur, tenant.id, cutoff=cutoff
        ):
            if not conversations_repository.reactivate_bot(cur, conversation_id, now=now):
                continue
            conversations_repository.insert_message(
                cur,
                conversation_id=conversation_id,
                content=SYSTEM_NOTE.format(minutes=minutes),
                sender_type=conversations_repository.SENDER_SYSTEM,
                metadata={"type": "system_notification", "automation": True},
                now=now,
            )
            reactivated += 1
    return reactivated


def run_agent_inactivity_sweep(now: datetime | None = None) -> dict[str, int]:
    """Check every opted-in tenant. A failing tenant does not stop the others."""
    now = ensure_aware(now or utc_now())
    with txn() as cur:
        tenant_ids = list_tenants_with_agent_timeout(cur)

    result = {"tenants": len(tenant_ids), "tenants_failed": 0, "reactivated": 0}
    for tenant_id in tenant_ids:
        with tenant_scope(tenant_id):
            try:
                count = reactivate_idle_conversations(tenant_id, now)
            except Exception:
                result["tenants_failed"] += 1
                logger.exception(
                    "agent inactivity check failed for tenant",
                    extra={"extra_fields": safe_log_context(tenant_id=tenant_id)},
                )
                continue
            result["reactivated"] += count
            if count:
                logger.info(
                    "conversations returned to bot",
                    extra={"extra_fields": safe_log_context(tenant_id=tenant_id, count=count)},
                )
    return result
