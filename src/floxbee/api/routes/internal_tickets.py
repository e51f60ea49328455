"""Internal ticket endpoints (SLA manager).

POST /internal/tickets                     → create, enqueue "created" event
POST /internal/tickets/{id}/transition     → change status/priority/assignee
GET  /internal/tickets/{id}/sla?owner_id=  → breach status of one ticket
GET  /internal/tickets/sla-report?owner_id= → breach counts of open tickets

``actor_id`` / ``owner_id`` are profile ids; they are resolved to the tenant
owner before anything is read or written. Notifications are not sent here:
the transition is committed first, then a ticket-notify task is enqueued.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from pydantic import BaseModel, ConfigDict

from floxbee.api.task_auth import require_task_auth
from floxbee.domain import tickets
from floxbee.domain.errors import DataError, NotFoundError
from floxbee.infra.db import txn
from floxbee.infra.repositories import tickets_repository
from floxbee.infra.repositories.tickets_repository import Ticket
from floxbee.infra.tenants import resolve_tenant
from floxbee.infra.time import utc_now
from floxbee.observability.correlation import get_correlation_id
from floxbee.observability.logging import get_logger
from floxbee.observability.redaction import safe_log_context
from floxbee.tasks.client import TasksClient

logger = get_logger(__name__)

router = APIRouter(
    prefix="/internal/tickets",
    tags=["internal"],
    dependencies=[Depends(require_task_auth)],
)

Priority = Literal["baixa", "media", "alta", "urgente"]
Status = Literal["aberto_ia", "em_analise", "pendente", "concluido", "cancelado"]

_tasks_client = TasksClient()


def _get_tasks_client() -> TasksClient:
    """Get tasks client (allows override in tests)."""
    return _tasks_client


class CreateTicketRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    actor_id: str
    title: str
    description: str | None = None
    priority: Priority | None = None
    assigned_to: str | None = None
    contact_id: str | None = None


class TransitionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    actor_id: str
    status: Status | None = None
    priority: Priority | None = None
    assigned_to: str | None = None
    note: str | None = None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _ticket_to_dict(ticket: Ticket) -> dict:
    return {
        "id": ticket.id,
        "number": ticket.number,
        "title": ticket.title,
        "priority": ticket.priority,
        "status": ticket.status,
        "sla_deadline": _iso(ticket.sla_deadline),
        "priority_changed_at": _iso(ticket.priority_changed_at),
        "assigned_to": ticket.assigned_to,
        "contact_id": ticket.contact_id,
        "resolved_at": _iso(ticket.resolved_at),
    }


def _enqueue_event(result: tickets.TransitionResult) -> None:
    if result.event_type is None:
        return
    _get_tasks_client().enqueue_ticket_event(
        ticket_id=result.ticket.id,
        event_type=result.event_type,
        history_id=result.history_id,
        correlation_id=get_correlation_id(),
    )


@router.post("", status_code=201)
def create_ticket(body: CreateTicketRequest) -> dict:
    """Create a ticket with its SLA deadline. 422 on invalid data."""
    now = utc_now()
    try:
        with txn() as cur:
            tenant = resolve_tenant(cur, body.actor_id)
            result = tickets.create_ticket(
                cur,
                owner_id=tenant.id,
                title=body.title,
                now=now,
                description=body.description,
                priority=body.priority,
                assigned_to=body.assigned_to,
                contact_id=body.contact_id,
                created_by=body.actor_id,
                sla_hours=tenant.config.sla_hours,
            )
    except DataError as e:
        raise HTTPException(status_code=422, detail=str(e))

    _enqueue_event(result)
    return {**_ticket_to_dict(result.ticket), "history_id": result.history_id}


@router.post("/{ticket_id}/transition")
def transition_ticket(
    body: TransitionRequest,
    ticket_id: str = Path(..., description="Ticket UUID"),
) -> dict:
    """Apply a change to a ticket.

    Only fields present in the body are applied; an explicit
    ``"assigned_to": null`` unassigns. The notify task is enqueued only when
    the status changed.
    """
    changes = {
        name: getattr(body, name)
        for name in ("status", "priority", "assigned_to")
        if name in body.model_fields_set
    }
    now = utc_now()
    try:
        with txn() as cur:
            tenant = resolve_tenant(cur, body.actor_id)
            result = tickets.transition_ticket(
                cur,
                ticket_id,
                now=now,
                owner_id=tenant.id,
                note=body.note,
                actor_id=body.actor_id,
                sla_hours=tenant.config.sla_hours,
                **changes,
            )
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Ticket not found")
    except DataError as e:
        raise HTTPException(status_code=422, detail=str(e))

    logger.info(
        "ticket transition applied",
        extra={
            "extra_fields": safe_log_context(
                ticket_id=ticket_id,
                status_changed=result.status_changed,
                fields=sorted(changes),
            )
        },
    )
    _enqueue_event(result)
    return {
        **_ticket_to_dict(result.ticket),
        "history_id": result.history_id,
        "status_changed": result.status_changed,
    }


@router.get("/sla-report")
def sla_report(owner_id: str = Query(..., description="Profile id of the tenant")) -> dict:
    """Count open tickets per breach class (ok, warning, expired)."""
    try:
        with txn() as cur:
            tenant = resolve_tenant(cur, owner_id)
            counts = tickets.sla_report(cur, tenant.id, utc_now())
    except DataError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return counts


@router.get("/{ticket_id}/sla")
def ticket_sla(
    ticket_id: str = Path(..., description="Ticket UUID"),
    owner_id: str = Query(..., description="Profile id of the tenant"),
) -> dict:
    try:
        with txn() as cur:
            tenant = resolve_tenant(cur, owner_id)
            ticket = tickets_repository.get_ticket(cur, ticket_id)
    except DataError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if ticket is None or ticket.owner_id != tenant.id:
        raise HTTPException(status_code=404, detail="Ticket not found")

    return {
        "ticket_id": ticket.id,
        "status": ticket.status,
        "priority": ticket.priority,
        "sla_deadline": _iso(ticket.sla_deadline),
        "breach": tickets.classify_breach(ticket.status, ticket.sla_deadline, utc_now()),
    }
