"""Ticket SLA manager.

Every status, priority or assignee change on a ticket goes through here.
The planning functions are pure; create_ticket/transition_ticket persist the
plan and append exactly one ticket_history row per call.

States: aberto_ia, em_analise, pendente, concluido, cancelado.
- create: aberto_ia when unassigned, em_analise when assigned
- assigning a (different) agent forces em_analise unless the same update
  sets a status explicitly
- entering concluido stamps resolved_at; leaving it clears resolved_at
- a priority change recomputes sla_deadline from now
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Literal, Mapping

from psycopg2.extensions import cursor as PgCursor

from floxbee.domain.errors import InvalidTransitionError, NotFoundError
from floxbee.domain.triggers import TICKET_STATUSES
from floxbee.infra.repositories import tickets_repository
from floxbee.infra.repositories.tickets_repository import HistoryEntry, Ticket
from floxbee.infra.time import ensure_aware
from floxbee.observability.logging import get_logger
from floxbee.observability.redaction import safe_log_context

logger = get_logger(__name__)

PRIORITIES = ("baixa", "media", "alta", "urgente")
DEFAULT_PRIORITY = "media"

SLA_HOURS: dict[str, int] = {
    "urgente": 4,
    "alta": 8,
    "media": 24,
    "baixa": 72,
}
DEFAULT_SLA_HOURS = 24

WARNING_WINDOW = timedelta(hours=2)

RESOLVED = "concluido"
CANCELLED = "cancelado"
CLOSED_STATUSES = frozenset({RESOLVED, CANCELLED})

BreachStatus = Literal["ok", "warning", "expired"]
TicketEvent = Literal["created", "status_change"]


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


def compute_sla_deadline(
    priority: str,
    start: datetime,
    sla_hours: Mapping[str, int] | None = None,
) -> datetime:
    """Deadline = start + hours for the priority (tenant override first)."""
    table = sla_hours or SLA_HOURS
    hours = table.get(priority) or SLA_HOURS.get(priority) or DEFAULT_SLA_HOURS
    return ensure_aware(start) + timedelta(hours=hours)


def classify_breach(status: str, sla_deadline: datetime | None, now: datetime) -> BreachStatus:
    """ok / warning (under two hours left) / expired. Closed tickets are ok."""
    if sla_deadline is None or status in CLOSED_STATUSES:
        return "ok"
    remaining = ensure_aware(sla_deadline) - ensure_aware(now)
    if remaining < timedelta(0):
        return "expired"
    if remaining < WARNING_WINDOW:
        return "warning"
    return "ok"


def _check_priority(priority: str) -> None:
    if priority not in PRIORITIES:
        raise InvalidTransitionError(f"invalid priority: {priority}")


def _check_status(status: str) -> None:
    if status not in TICKET_STATUSES:
        raise InvalidTransitionError(f"invalid status: {status}")


@dataclass(frozen=True)
class CreationPlan:
    priority: str
    status: str
    sla_deadline: datetime


def plan_creation(
    *,
    priority: str | None,
    assigned_to: str | None,
    now: datetime,
    sla_hours: Mapping[str, int] | None = None,
) -> CreationPlan:
    priority = priority or DEFAULT_PRIORITY
    _check_priority(priority)
    return CreationPlan(
        priority=priority,
        status="em_analise" if assigned_to else "aberto_ia",
        sla_deadline=compute_sla_deadline(priority, now, sla_hours),
    )


@dataclass(frozen=True)
class TransitionPlan:
    updates: dict[str, Any] = field(default_factory=dict)
    old_status: str | None = None
    new_status: str | None = None
    old_priority: str | None = None
    new_priority: str | None = None
    old_assigned_to: str | None = None
    new_assigned_to: str | None = None

    @property
    def status_changed(self) -> bool:
        return self.old_status != self.new_status


def plan_transition(
    ticket: Ticket,
    *,
    now: datetime,
    status: Any = UNSET,
    priority: Any = UNSET,
    assigned_to: Any = UNSET,
    sla_hours: Mapping[str, int] | None = None,
) -> TransitionPlan:
    """Compute column updates for a change request.

    Arguments left as UNSET are not part of the change; assigned_to=None
    explicitly unassigns.

    Raises:
        InvalidTransitionError: Unknown status/priority.
    """
    updates: dict[str, Any] = {}

    new_priority = ticket.priority
    if priority is not UNSET and priority is not None:
        _check_priority(priority)
        if priority != ticket.priority:
            new_priority = priority
            updates["priority"] = priority
            updates["priority_changed_at"] = now
            updates["sla_deadline"] = compute_sla_deadline(priority, now, sla_hours)

    new_assigned_to = ticket.assigned_to
    if assigned_to is not UNSET and assigned_to != ticket.assigned_to:
        new_assigned_to = assigned_to
        updates["assigned_to"] = assigned_to

    new_status = ticket.status
    if status is not UNSET and status is not None:
        _check_status(status)
        new_status = status
    elif "assigned_to" in updates and new_assigned_to is not None:
        new_status = "em_analise"

    if new_status != ticket.status:
        updates["status"] = new_status
        if new_status == RESOLVED:
            updates["resolved_at"] = now
        elif ticket.status == RESOLVED:
            updates["resolved_at"] = None

    return TransitionPlan(
        updates=updates,
        old_status=ticket.status,
        new_status=new_status,
        old_priority=ticket.priority,
        new_priority=new_priority,
        old_assigned_to=ticket.assigned_to,
        new_assigned_to=new_assigned_to,
    )


@dataclass(frozen=True)
class TransitionResult:
    ticket: Ticket
    history_id: str
    status_changed: bool
    event_type: TicketEvent | None


def create_ticket(
    cur: PgCursor,
    *,
    owner_id: str,
    title: str,
    now: datetime,
    description: str | None = None,
    priority: str | None = None,
    assigned_to: str | None = None,
    contact_id: str | None = None,
    created_by: str | None = None,
    sla_hours: Mapping[str, int] | None = None,
) -> TransitionResult:
    """Insert a ticket and its opening history row."""
    if not title or not title.strip():
        raise InvalidTransitionError("title is required")

    plan = plan_creation(priority=priority, assigned_to=assigned_to, now=now, sla_hours=sla_hours)
    ticket = tickets_repository.insert_ticket(
        cur,
        owner_id=owner_id,
        title=title.strip(),
        description=description,
        priority=plan.priority,
        status=plan.status,
        sla_deadline=plan.sla_deadline,
        assigned_to=assigned_to,
        contact_id=contact_id,
        created_by=created_by,
        now=now,
    )
    history_id = tickets_repository.insert_history(
        cur,
        HistoryEntry(
            ticket_id=ticket.id,
            old_status=None,
            new_status=ticket.status,
            old_priority=None,
            new_priority=ticket.priority,
            old_assigned_to=None,
            new_assigned_to=ticket.assigned_to,
            note="Chamado criado",
            created_by=created_by,
        ),
        now=now,
    )

    logger.info(
        "ticket created",
        extra={
            "extra_fields": safe_log_context(
                ticket_id=ticket.id,
                priority=ticket.priority,
                status=ticket.status,
            )
        },
    )
    return TransitionResult(
        ticket=ticket, history_id=history_id, status_changed=True, event_type="created"
    )


def transition_ticket(
    cur: PgCursor,
    ticket_id: str,
    *,
    now: datetime,
    owner_id: str | None = None,
    status: Any = UNSET,
    priority: Any = UNSET,
    assigned_to: Any = UNSET,
    note: str | None = None,
    actor_id: str | None = None,
    sla_hours: Mapping[str, int] | None = None,
) -> TransitionResult:
    """Lock the ticket, apply a change and append one history row.

    Raises:
        NotFoundError: Unknown ticket (or owned by another tenant).
        InvalidTransitionError: Invalid value or nothing to change.
    """
    ticket = tickets_repository.get_ticket(cur, ticket_id, lock=True)
    if ticket is None or (owner_id is not None and ticket.owner_id != owner_id):
        raise NotFoundError(f"ticket {ticket_id} not found")

    plan = plan_transition(
        ticket,
        now=now,
        status=status,
        priority=priority,
        assigned_to=assigned_to,
        sla_hours=sla_hours,
    )
    if not plan.updates and not note:
        raise InvalidTransitionError("nothing to change")

    if plan.updates:
        ticket = tickets_repository.update_ticket(cur, ticket_id, plan.updates, now=now)

    if note is None and plan.status_changed:
        note = f"Status alterado de {plan.old_status} para {plan.new_status}"

    history_id = tickets_repository.insert_history(
        cur,
        HistoryEntry(
            ticket_id=ticket_id,
            old_status=plan.old_status,
            new_status=plan.new_status,
            old_priority=plan.old_priority,
            new_priority=plan.new_priority,
            old_assigned_to=plan.old_assigned_to,
            new_assigned_to=plan.new_assigned_to,
            note=note,
            created_by=actor_id,
        ),
        now=now,
    )

    logger.info(
        "ticket transitioned",
        extra={
            "extra_fields": safe_log_context(
                ticket_id=ticket_id,
                old_status=plan.old_status,
                new_status=plan.new_status,
                priority_changed=plan.old_priority != plan.new_priority,
            )
        },
    )
    return TransitionResult(
        ticket=ticket,
        history_id=history_id,
        status_changed=plan.status_changed,
        event_type="status_change" if plan.status_changed else None,
    )


def sla_report(cur: PgCursor, owner_id: str, now: datetime) -> dict[str, int]:
    """Count open tickets per breach class."""
    counts = {"ok": 0, "warning": 0, "expired": 0}
    for ticket in tickets_repository.list_open_tickets(cur, owner_id):
        counts[classify_breach(ticket.status, ticket.sla_deadline, now)] += 1
    return counts
