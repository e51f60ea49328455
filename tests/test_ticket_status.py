"""Tests for ticket notification planning."""

from dataclasses import astuple, replace
from datetime import datetime, timezone

import pytest

from helpers import FakeCursor, contact_row, rule_row

from floxbee.automation.ticket_status import load_event, plan_event
from floxbee.domain.errors import DataError, NotFoundError
from floxbee.infra.repositories.tickets_repository import HistoryEntry, Ticket

T0 = datetime(2024, 6, 10, 9, 0, tzinfo=timezone.utc)

TICKET = Ticket(
    id="t-1",
    number=42,
    owner_id="owner-1",
    title="Impressora parada",
    description=None,
    priority="alta",
    status="concluido",
    sla_deadline=None,
    priority_changed_at=T0,
    assigned_to="agent-2",
    contact_id="c-1",
    created_by="agent-1",
    resolved_at=T0,
    created_at=T0,
)

HISTORY = HistoryEntry(
    ticket_id="t-1",
    old_status="em_analise",
    new_status="concluido",
    old_priority=None,
    new_priority=None,
    old_assigned_to=None,
    new_assigned_to=None,
    note=None,
    created_by="agent-2",
)


def setting_row(setting_id="s-1", *, event="status_change", status_to=None, creator=True,
                assignee=False, template=None):
    return (setting_id, "owner-1", event, None, status_to, creator, assignee, template)


def profile_row(profile_id, name, phone="11911112222", active=True):
    return (profile_id, name, phone, active)


class TestStaffNotifications:
    def test_creator_is_notified(self, tenant):
        cur = (
            FakeCursor()
            .on("FROM ticket_notification_settings", [setting_row()])
            .on("FROM profiles", [profile_row("agent-2", "Carlos Dias")])
            .on("FROM profiles", [profile_row("agent-1", "Ana Reis")])
        )

        plan = plan_event(cur, tenant, TICKET, HISTORY, history_id="h-1", event_type="status_change")

        assert len(plan.staff) == 1
        notification = plan.staff[0]
        assert notification.recipient.id == "agent-1"
        assert notification.body == (
            "Chamado #42 (Impressora parada) mudou de Em análise para Concluído."
        )

    def test_setting_for_other_status_is_ignored(self, tenant):
        cur = FakeCursor().on(
            "FROM ticket_notification_settings", [setting_row(status_to="pendente")]
        )
        plan = plan_event(cur, tenant, TICKET, HISTORY, history_id="h-1", event_type="status_change")
        assert plan.staff == []

    def test_already_notified(self, tenant):
        cur = (
            FakeCursor()
            .on("FROM ticket_notification_settings", [setting_row()])
            .on("FROM profiles", [profile_row("agent-1", "Ana Reis")])
            .on("FROM ticket_notification_log", [(1,)])
        )
        plan = plan_event(cur, tenant, TICKET, HISTORY, history_id="h-1", event_type="status_change")
        assert plan.staff == []

    def test_custom_template_names_recipient(self, tenant):
        cur = (
            FakeCursor()
            .on(
                "FROM ticket_notification_settings",
                [setting_row(creator=False, assignee=True, template="{{nome}}: #{{numero}} {{status}}")],
            )
            .on("FROM profiles", [profile_row("agent-2", "Carlos Dias")])
        )
        plan = plan_event(cur, tenant, TICKET, HISTORY, history_id="h-1", event_type="status_change")
        assert [n.body for n in plan.staff] == ["Carlos: #42 Concluído"]


class TestContactRequests:
    def test_matching_rule_messages_contact(self, tenant):
        cur = (
            FakeCursor()
            .on("FROM contacts c", [contact_row("c-1")])
            .on(
                "FROM automation_rules r",
                [
                    rule_row(
                        "r-1",
                        trigger_type="ticket_status",
                        trigger_config={"type": "ticket_status", "status_to": "concluido"},
                        message="{{nome}}, seu chamado #{{numero}} foi {{status}}.",
                    ),
                    rule_row(
                        "r-2",
                        trigger_type="ticket_status",
                        trigger_config={"type": "ticket_status", "status_to": "pendente"},
                    ),
                ],
            )
        )

        plan = plan_event(cur, tenant, TICKET, HISTORY, history_id="h-1", event_type="status_change")

        assert list(plan.contact_requests) == ["r-1"]
        request = plan.contact_requests["r-1"][0]
        assert request.body == "Maria, seu chamado #42 foi Concluído."
        assert request.dedupe_key == "ticket:h-1"

    def test_ticket_without_contact(self, tenant):
        cur = FakeCursor()
        plan = plan_event(
            cur, tenant, replace(TICKET, contact_id=None), HISTORY, history_id="h-1",
            event_type="status_change",
        )
        assert plan.contact_requests == {}


def test_unknown_event_type(tenant):
    with pytest.raises(DataError):
        plan_event(FakeCursor(), tenant, TICKET, HISTORY, history_id="h-1", event_type="deleted")


class TestLoadEvent:
    def test_unknown_ticket(self):
        with pytest.raises(NotFoundError):
            load_event(FakeCursor(), "t-1", "h-1")

    def test_history_of_other_ticket(self):
        cur = (
            FakeCursor()
            .on("FROM tickets WHERE id", [astuple(TICKET)])
            .on("FROM ticket_history", [])
        )
        with pytest.raises(DataError):
            load_event(cur, "t-1", "h-1")
