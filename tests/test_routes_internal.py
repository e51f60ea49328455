"""Tests for the internal ticket and rule endpoints."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from helpers import FakeCursor, fake_txn, rule_row

from floxbee.api.factory import create_app
from floxbee.api.task_auth import require_task_auth
from floxbee.domain.errors import InvalidTransitionError, NotFoundError
from floxbee.domain.tickets import TransitionResult
from floxbee.infra.repositories.rules_repository import _row_to_rule
from floxbee.infra.repositories.tickets_repository import Ticket
from floxbee.infra.tenants import Tenant, TenantConfig
from floxbee.tasks.client import TasksClient

T0 = datetime(2024, 6, 10, 9, 0, tzinfo=timezone.utc)

TICKET = Ticket(
    id="t-1",
    number=7,
    owner_id="owner-1",
    title="Sem acesso",
    description=None,
    priority="urgente",
    status="aberto_ia",
    sla_deadline=T0 + timedelta(hours=4),
    priority_changed_at=T0,
    assigned_to=None,
    contact_id=None,
    created_by="agent-1",
    resolved_at=None,
    created_at=T0,
)

TENANT = Tenant(id="owner-1", config=TenantConfig(sla_hours={"urgente": 2}))


@pytest.fixture
def tasks_client():
    return TasksClient(backend="inline")


@pytest.fixture
def client(tasks_client):
    app = create_app(role="worker")
    app.dependency_overrides[require_task_auth] = lambda: None
    cur = FakeCursor()
    with patch("floxbee.api.routes.internal_tickets.txn", fake_txn(cur)), patch(
        "floxbee.api.routes.internal_rules.txn", fake_txn(cur)
    ), patch(
        "floxbee.api.routes.internal_tickets.resolve_tenant", return_value=TENANT
    ), patch(
        "floxbee.api.routes.internal_rules.resolve_owner_id", return_value="owner-1"
    ), patch(
        "floxbee.api.routes.internal_tickets._get_tasks_client", return_value=tasks_client
    ):
        yield TestClient(app)


class TestCreateTicket:
    def test_created_and_event_enqueued(self, client, tasks_client):
        result = TransitionResult(
            ticket=TICKET, history_id="h-1", status_changed=True, event_type="created"
        )
        with patch("floxbee.domain.tickets.create_ticket", return_value=result) as mock_create:
            response = client.post(
                "/internal/tickets",
                json={"actor_id": "agent-1", "title": "Sem acesso", "priority": "urgente"},
            )

        assert response.status_code == 201
        body = response.json()
        assert body["id"] == "t-1"
        assert body["history_id"] == "h-1"
        assert body["sla_deadline"] == "2024-06-10T13:00:00+00:00"

        kwargs = mock_create.call_args.kwargs
        assert kwargs["owner_id"] == "owner-1"
        assert kwargs["created_by"] == "agent-1"
        assert kwargs["sla_hours"] == {"urgente": 2}

        (task,) = tasks_client.get_recorded_tasks()
        assert task["task_id"] == "ticket-notify:h-1"
        assert task["url_path"] == "/tasks/tickets/notify"
        assert task["payload"] == {
            "ticket_id": "t-1",
            "event_type": "created",
            "history_id": "h-1",
        }

    def test_unknown_priority_rejected(self, client):
        response = client.post(
            "/internal/tickets",
            json={"actor_id": "agent-1", "title": "x", "priority": "critica"},
        )
        assert response.status_code == 422

    def test_extra_fields_rejected(self, client):
        response = client.post(
            "/internal/tickets",
            json={"actor_id": "agent-1", "title": "x", "owner_id": "owner-2"},
        )
        assert response.status_code == 422

    def test_blank_title(self, client, tasks_client):
        with patch(
            "floxbee.domain.tickets.create_ticket",
            side_effect=InvalidTransitionError("title is required"),
        ):
            response = client.post("/internal/tickets", json={"actor_id": "agent-1", "title": " "})
        assert response.status_code == 422
        assert tasks_client.get_recorded_tasks() == []


class TestTransition:
    def test_only_given_fields_are_passed(self, client):
        result = TransitionResult(
            ticket=TICKET, history_id="h-2", status_changed=False, event_type=None
        )
        with patch(
            "floxbee.domain.tickets.transition_ticket", return_value=result
        ) as mock_transition:
            response = client.post(
                "/internal/tickets/t-1/transition",
                json={"actor_id": "agent-1", "assigned_to": None},
            )

        assert response.status_code == 200
        assert response.json()["status_changed"] is False
        kwargs = mock_transition.call_args.kwargs
        assert kwargs["assigned_to"] is None
        assert "status" not in kwargs
        assert "priority" not in kwargs

    def test_status_change_enqueues_event(self, client, tasks_client):
        done = replace(TICKET, status="concluido")
        result = TransitionResult(
            ticket=done, history_id="h-3", status_changed=True, event_type="status_change"
        )
        with patch("floxbee.domain.tickets.transition_ticket", return_value=result):
            response = client.post(
                "/internal/tickets/t-1/transition",
                json={"actor_id": "agent-1", "status": "concluido", "note": "resolvido"},
            )

        assert response.status_code == 200
        assert tasks_client.was_enqueued("ticket-notify:h-3")

    def test_no_event_without_status_change(self, client, tasks_client):
        result = TransitionResult(
            ticket=TICKET, history_id="h-4", status_changed=False, event_type=None
        )
        with patch("floxbee.domain.tickets.transition_ticket", return_value=result):
            client.post(
                "/internal/tickets/t-1/transition",
                json={"actor_id": "agent-1", "priority": "alta"},
            )
        assert tasks_client.get_recorded_tasks() == []

    def test_unknown_ticket(self, client):
        with patch(
            "floxbee.domain.tickets.transition_ticket", side_effect=NotFoundError("t-9")
        ):
            response = client.post(
                "/internal/tickets/t-9/transition",
                json={"actor_id": "agent-1", "status": "pendente"},
            )
        assert response.status_code == 404

    def test_nothing_to_change(self, client):
        with patch(
            "floxbee.domain.tickets.transition_ticket",
            side_effect=InvalidTransitionError("nothing to change"),
        ):
            response = client.post(
                "/internal/tickets/t-1/transition", json={"actor_id": "agent-1"}
            )
        assert response.status_code == 422

    def test_unknown_status(self, client):
        response = client.post(
            "/internal/tickets/t-1/transition",
            json={"actor_id": "agent-1", "status": "aberto"},
        )
        assert response.status_code == 422


class TestSla:
    def test_report(self, client):
        with patch(
            "floxbee.api.routes.internal_tickets.resolve_tenant", return_value=TENANT
        ) as mock_resolve, patch(
            "floxbee.domain.tickets.sla_report",
            return_value={"ok": 3, "warning": 1, "expired": 2},
        ) as mock_report:
            response = client.get("/internal/tickets/sla-report", params={"owner_id": "agent-1"})

        assert response.status_code == 200
        assert response.json() == {"ok": 3, "warning": 1, "expired": 2}
        assert mock_report.call_args.args[1] == "owner-1"
        assert mock_resolve.call_args.args[1] == "agent-1"

    def test_ticket_sla(self, client):
        with patch(
            "floxbee.infra.repositories.tickets_repository.get_ticket", return_value=TICKET
        ):
            response = client.get("/internal/tickets/t-1/sla", params={"owner_id": "owner-1"})

        assert response.status_code == 200
        body = response.json()
        assert body["ticket_id"] == "t-1"
        # deadline long gone
        assert body["breach"] == "expired"

    def test_ticket_of_other_tenant(self, client):
        other = replace(TICKET, owner_id="owner-2")
        with patch(
            "floxbee.infra.repositories.tickets_repository.get_ticket", return_value=other
        ):
            response = client.get("/internal/tickets/t-1/sla", params={"owner_id": "owner-1"})
        assert response.status_code == 404


class TestRules:
    def test_create_rule(self, client):
        rule = _row_to_rule(
            rule_row(
                "r-1",
                trigger_type="no_response",
                trigger_config={"type": "no_response", "delay_minutes": 30, "max_attempts": 1},
            )
        )
        with patch(
            "floxbee.infra.repositories.rules_repository.insert_rule", return_value=rule
        ) as mock_insert:
            response = client.post(
                "/internal/rules",
                json={
                    "actor_id": "agent-1",
                    "name": "Follow-up",
                    "trigger_config": {"type": "no_response", "delay_minutes": 30},
                },
            )

        assert response.status_code == 201
        assert response.json()["trigger_config"]["delay_minutes"] == 30
        assert mock_insert.call_args.kwargs["owner_id"] == "owner-1"

    def test_invalid_trigger_config(self, client):
        response = client.post(
            "/internal/rules",
            json={
                "actor_id": "agent-1",
                "name": "Broken",
                "trigger_config": {"type": "no_response", "delay_minutes": -5},
            },
        )
        assert response.status_code == 422
        assert "delay_minutes" in response.json()["detail"]

    def test_update_passes_only_given_fields(self, client):
        rule = _row_to_rule(rule_row("r-1", message=None))
        with patch(
            "floxbee.infra.repositories.rules_repository.update_rule", return_value=rule
        ) as mock_update:
            response = client.patch(
                "/internal/rules/r-1", json={"actor_id": "agent-1", "message": None}
            )

        assert response.status_code == 200
        assert mock_update.call_args.kwargs["changes"] == {"message": None}

    def test_update_unknown_rule(self, client):
        with patch(
            "floxbee.infra.repositories.rules_repository.update_rule",
            side_effect=NotFoundError("r-9"),
        ):
            response = client.patch("/internal/rules/r-9", json={"actor_id": "agent-1"})
        assert response.status_code == 404
