"""Ticket notifications, driven by SLA manager transitions.

Two audiences per transition (one ticket_history row):

- staff: ticket_notification_settings matched on (event, status_from,
  status_to), NULL matching anything; the ticket creator and/or assignee
  get a message. Ledger: ticket_notification_log, one row per setting,
  recipient and history row.
- contact: active ``ticket_status`` automation rules whose status_from /
  status_to match message the ticket's contact. Ledger: automation_logs
  with key ``ticket:<history_id>``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from psycopg2.extensions import cursor as PgCursor

from floxbee.automation import ledger
from floxbee.automation.models import DeliveryRequest
from floxbee.domain.errors import DataError, NotFoundError
from floxbee.domain.templates import (
    DEFAULT_BODIES,
    TICKET_CREATED_DEFAULT,
    first_name,
    render,
    resolve_body,
    ticket_variables,
)
from floxbee.domain.triggers import TicketStatusTrigger, parse_trigger_config
from floxbee.infra.repositories import (
    contacts_repository,
    notification_settings_repository,
    rules_repository,
    tickets_repository,
)
from floxbee.infra.repositories.notification_settings_repository import Profile
from floxbee.infra.repositories.tickets_repository import HistoryEntry, Ticket
from floxbee.infra.tenants import Tenant
from floxbee.observability.logging import get_logger
from floxbee.observability.redaction import safe_log_context

logger = get_logger(__name__)

EVENT_TYPES = ("created", "status_change")


@dataclass(frozen=True)
class StaffNotification:
    setting_id: str
    recipient: Profile
    body: str = field(repr=False)


@dataclass
class TicketEventPlan:
    ticket: Ticket
    history_id: str
    event_type: str
    staff: list[StaffNotification] = field(default_factory=list)
    contact_requests: dict[str, list[DeliveryRequest]] = field(default_factory=dict)


def load_event(
    cur: PgCursor,
    ticket_id: str,
    history_id: str,
) -> tuple[Ticket, HistoryEntry]:
    """Load the ticket and the history row describing the transition.

    Raises:
        NotFoundError: Unknown ticket.
        DataError: History row missing or belonging to another ticket.
    """
    ticket = tickets_repository.get_ticket(cur, ticket_id)
    if ticket is None:
        raise NotFoundError(f"ticket {ticket_id} not found")
    loaded = tickets_repository.get_history_entry(cur, history_id)
    if loaded is None or loaded[0].ticket_id != ticket.id:
        raise DataError(f"history {history_id} does not belong to ticket {ticket_id}")
    return ticket, loaded[0]


def _recipient_ids(setting, ticket: Ticket, history: HistoryEntry) -> list[str]:
    ids: list[str] = []
    if setting.notify_creator and ticket.created_by:
        ids.append(ticket.created_by)
    assignee = history.new_assigned_to or ticket.assigned_to
    if setting.notify_assignee and assignee and assignee not in ids:
        ids.append(assignee)
    return ids


def plan_staff_notifications(
    cur: PgCursor,
    tenant: Tenant,
    ticket: Ticket,
    history: HistoryEntry,
    history_id: str,
    event_type: str,
) -> list[StaffNotification]:
    settings = [
        s
        for s in notification_settings_repository.list_active_settings(cur, tenant.id)
        if s.matches(event_type, history.old_status, history.new_status)
    ]
    if not settings:
        return []

    assignee_id = history.new_assigned_to or ticket.assigned_to
    assignee = (
        notification_settings_repository.get_profile(cur, assignee_id) if assignee_id else None
    )
    default_body = (
        TICKET_CREATED_DEFAULT if event_type == "created" else DEFAULT_BODIES["ticket_status"]
    )

    notifications: list[StaffNotification] = []
    for setting in settings:
        for recipient_id in _recipient_ids(setting, ticket, history):
            profile = notification_settings_repository.get_profile(cur, recipient_id)
            if profile is None or not profile.active or not profile.phone:
                continue
            if ledger.has_notified(cur, setting.id, profile.id, history_id):
                continue
            variables = ticket_variables(
                ticket,
                old_status=history.old_status,
                assignee_name=assignee.name if assignee else None,
                recipient_name=profile.name,
            )
            notifications.append(
                StaffNotification(
                    setting_id=setting.id,
                    recipient=profile,
                    body=render(setting.message_template or default_body, variables),
                )
            )
    return notifications


def plan_contact_requests(
    cur: PgCursor,
    tenant: Tenant,
    ticket: Ticket,
    history: HistoryEntry,
    history_id: str,
) -> dict[str, list[DeliveryRequest]]:
    """Requests per ticket_status rule for the ticket's contact."""
    if not ticket.contact_id:
        return {}
    contact = contacts_repository.get_contact(cur, ticket.contact_id)
    if contact is None or not contact.active or not contact.phone:
        return {}

    dedupe_key = f"ticket:{history_id}"
    planned: dict[str, list[DeliveryRequest]] = {}
    for rule in rules_repository.list_active_rules(cur, tenant.id, "ticket_status"):
        try:
            config = parse_trigger_config(rule.trigger_config, rule.trigger_type)
        except DataError as e:
            logger.warning(
                "skipping ticket rule with invalid config",
                extra={"extra_fields": safe_log_context(rule_id=rule.id, error=str(e))},
            )
            continue
        if not isinstance(config, TicketStatusTrigger):
            continue
        if not config.matches(history.old_status, history.new_status):
            continue
        if ledger.has_fired(cur, rule.id, contact.id, dedupe_key=dedupe_key):
            continue

        variables = ticket_variables(ticket, old_status=history.old_status)
        variables["nome"] = first_name(contact.name)
        variables["nome_completo"] = contact.name
        planned[rule.id] = [
            DeliveryRequest(
                rule_id=rule.id,
                contact_id=contact.id,
                recipient=contact.phone,
                body=render(resolve_body(rule.message, rule.template_body, "ticket_status"), variables),
                dedupe_key=dedupe_key,
                details={
                    "trigger": "ticket_status",
                    "ticket_id": ticket.id,
                    "history_id": history_id,
                    "new_status": history.new_status,
                },
            )
        ]
    return planned


def plan_event(
    cur: PgCursor,
    tenant: Tenant,
    ticket: Ticket,
    history: HistoryEntry,
    *,
    history_id: str,
    event_type: str,
) -> TicketEventPlan:
    """Everything to send for one ticket transition.

    Raises:
        DataError: Unknown event type.
    """
    if event_type not in EVENT_TYPES:
        raise DataError(f"unsupported ticket event: {event_type}")
    return TicketEventPlan(
        ticket=ticket,
        history_id=history_id,
        event_type=event_type,
        staff=plan_staff_notifications(cur, tenant, ticket, history, history_id, event_type),
        contact_requests=plan_contact_requests(cur, tenant, ticket, history, history_id),
    )
