"""Tests for no-response follow-ups."""

from dataclasses import replace
from datetime import time, timedelta

from helpers import FakeCursor, contact_row, rule_row

from floxbee.automation.no_response import evaluate
from floxbee.infra.repositories.rules_repository import _row_to_rule
from floxbee.infra.tenants import BusinessHours

RULE = _row_to_rule(
    rule_row(
        trigger_type="no_response",
        trigger_config={"type": "no_response", "delay_minutes": 30, "max_attempts": 2},
    )
)


def conversation_row(now, *, minutes_ago=60, sender="contact", phone="11987654321"):
    return ("conv-1", now - timedelta(minutes=minutes_ago), sender, *contact_row(phone=phone))


def test_first_follow_up(tenant, now):
    cur = FakeCursor().on("FROM conversations conv", [conversation_row(now)])

    requests = evaluate(cur, tenant, RULE, now)

    assert len(requests) == 1
    request = requests[0]
    assert request.conversation_id == "conv-1"
    assert request.dedupe_key == "conversation:conv-1:attempt:1"
    assert request.details["attempt"] == 1
    assert request.body == "Ainda está aí? Como posso te ajudar?"
    _, params = cur.queries("FROM conversations conv")[0]
    assert params == ("owner-1", now - timedelta(minutes=30))


def test_business_answered_last(tenant, now):
    cur = FakeCursor().on("FROM conversations conv", [conversation_row(now, sender="agent")])
    assert evaluate(cur, tenant, RULE, now) == []


def test_max_attempts_reached(tenant, now):
    cur = (
        FakeCursor()
        .on("FROM conversations conv", [conversation_row(now)])
        .on("COUNT(*)", [(2,)])
    )
    assert evaluate(cur, tenant, RULE, now) == []


def test_second_attempt_waits_for_delay(tenant, now):
    cur = (
        FakeCursor()
        .on("FROM conversations conv", [conversation_row(now, minutes_ago=90)])
        .on("COUNT(*)", [(1,)])
        .on("MAX(created_at)", [(now - timedelta(minutes=10),)])
    )
    assert evaluate(cur, tenant, RULE, now) == []


def test_second_attempt_after_delay(tenant, now):
    cur = (
        FakeCursor()
        .on("FROM conversations conv", [conversation_row(now, minutes_ago=90)])
        .on("COUNT(*)", [(1,)])
        .on("MAX(created_at)", [(now - timedelta(minutes=45),)])
    )

    requests = evaluate(cur, tenant, RULE, now)

    assert [r.dedupe_key for r in requests] == ["conversation:conv-1:attempt:2"]


def test_contact_without_phone(tenant, now):
    cur = FakeCursor().on("FROM conversations conv", [conversation_row(now, phone=None)])
    assert evaluate(cur, tenant, RULE, now) == []


def test_held_outside_business_hours(tenant, now):
    # `now` is a Saturday; weekdays only
    closed = replace(
        tenant,
        config=replace(
            tenant.config,
            business_hours=BusinessHours(enabled=True, start=time(8, 0), end=time(18, 0)),
        ),
    )
    cur = FakeCursor().on("FROM conversations conv", [conversation_row(now)])

    assert evaluate(cur, closed, RULE, now) == []
    assert cur.executed == []
