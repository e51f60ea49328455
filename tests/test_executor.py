"""Tests for delivery of evaluator requests (send, ledger, transcript)."""

import json
from unittest.mock import patch

import pytest

from helpers import FakeCursor, fake_txn

from floxbee.automation.executor import deliver, send_delay_seconds
from floxbee.automation.models import DeliveryRequest
from floxbee.domain.errors import ConfigurationError
from floxbee.infra.credentials import Credential
from floxbee.whatsapp.dispatcher import DeliveryOutcome

CREDENTIAL = Credential(
    owner_id="owner-1",
    integration_type="whatsapp",
    config={"access_token": "token", "phone_number_id": "111"},
)


def make_request(contact_id="c-1", conversation_id="conv-1", dedupe_key="day:2024-06-15"):
    return DeliveryRequest(
        rule_id="r-1",
        contact_id=contact_id,
        recipient="11987654321",
        body="Feliz aniversário!",
        dedupe_key=dedupe_key,
        conversation_id=conversation_id,
        details={"trigger": "birthday"},
    )


@pytest.fixture
def cur():
    return (
        FakeCursor()
        .on("INSERT INTO automation_logs", [("log-1",)])
        .on("INSERT INTO messages", [("m-1",)])
    )


def run_deliver(cur, tenant, now, requests, outcomes, **kwargs):
    with patch("floxbee.automation.executor.txn", fake_txn(cur)), patch(
        "floxbee.automation.executor.resolve_credential", return_value=CREDENTIAL
    ) as mock_resolve, patch(
        "floxbee.whatsapp.dispatcher.send", side_effect=outcomes
    ) as mock_send:
        summary = deliver(tenant, "r-1", requests, now=now, correlation_id="corr-1", **kwargs)
    return summary, mock_resolve, mock_send


class TestDeliver:
    def test_sends_records_and_writes_transcript(self, cur, tenant, now):
        summary, _, mock_send = run_deliver(
            cur,
            tenant,
            now,
            [make_request("c-1"), make_request("c-2")],
            [DeliveryOutcome.sent("wamid.1"), DeliveryOutcome.sent("wamid.2")],
        )

        assert (summary.candidates, summary.sent, summary.failed) == (2, 2, 0)
        assert mock_send.call_count == 2
        ledger_rows = cur.queries("INSERT INTO automation_logs")
        assert [params[4] for _, params in ledger_rows] == ["success", "success"]
        assert json.loads(ledger_rows[0][1][5])["message_id"] == "wamid.1"
        transcript = cur.queries("INSERT INTO messages")
        assert len(transcript) == 2
        metadata = json.loads(transcript[0][1][4])
        assert metadata["automation"] is True
        assert metadata["provider_message_id"] == "wamid.1"

    def test_provider_failure_is_recorded_and_next_continues(self, cur, tenant, now):
        summary, _, _ = run_deliver(
            cur,
            tenant,
            now,
            [make_request("c-1"), make_request("c-2")],
            [DeliveryOutcome.provider_error("131026", "undeliverable"), DeliveryOutcome.sent("w")],
        )

        assert (summary.sent, summary.failed) == (1, 1)
        first = cur.queries("INSERT INTO automation_logs")[0][1]
        assert first[4] == "error"
        assert json.loads(first[5])["error_code"] == "131026"
        assert len(cur.queries("INSERT INTO messages")) == 1

    def test_ledger_conflict_counts_as_duplicate(self, tenant, now):
        cur = FakeCursor().on("INSERT INTO automation_logs", [])
        summary, _, _ = run_deliver(
            cur, tenant, now, [make_request()], [DeliveryOutcome.sent("wamid.1")]
        )

        assert (summary.sent, summary.failed, summary.duplicates) == (0, 0, 1)
        assert cur.queries("INSERT INTO messages") == []

    def test_unexpected_error_isolated_per_request(self, cur, tenant, now):
        summary, _, mock_send = run_deliver(
            cur,
            tenant,
            now,
            [make_request("c-1"), make_request("c-2")],
            [RuntimeError("boom"), DeliveryOutcome.sent("wamid.2")],
        )

        assert (summary.sent, summary.failed) == (1, 1)
        assert mock_send.call_count == 2
        first = cur.queries("INSERT INTO automation_logs")[0][1]
        assert first[4] == "error"
        assert json.loads(first[5])["error_code"] == "send_exception"

    def test_unreadable_provider_reply_is_still_recorded(self, cur, tenant, now):
        with patch("floxbee.automation.executor.txn", fake_txn(cur)), patch(
            "floxbee.whatsapp.dispatcher._do_request",
            side_effect=ValueError("Expecting value"),
        ):
            summary = deliver(tenant, "r-1", [make_request()], now=now, credential=CREDENTIAL)

        assert (summary.sent, summary.failed) == (1, 0)
        rows = cur.queries("INSERT INTO automation_logs")
        assert len(rows) == 1
        assert rows[0][1][4] == "success"

    def test_transcript_falls_back_to_latest_conversation(self, cur, tenant, now):
        cur.on("FROM conversations", [("conv-9",)])
        run_deliver(
            cur,
            tenant,
            now,
            [make_request(conversation_id=None)],
            [DeliveryOutcome.sent("wamid.1")],
        )
        assert cur.queries("INSERT INTO messages")[0][1][0] == "conv-9"

    def test_given_credential_is_used(self, cur, tenant, now):
        _, mock_resolve, _ = run_deliver(
            cur,
            tenant,
            now,
            [make_request()],
            [DeliveryOutcome.sent("wamid.1")],
            credential=CREDENTIAL,
        )
        mock_resolve.assert_not_called()

    def test_no_requests(self, cur, tenant, now):
        summary, mock_resolve, mock_send = run_deliver(cur, tenant, now, [], [])
        assert summary.candidates == 0
        mock_resolve.assert_not_called()
        mock_send.assert_not_called()


class TestConfigurationError:
    def test_missing_credential_audits_rule_and_sends_nothing(self, tenant, now):
        cur = FakeCursor()
        with patch("floxbee.automation.executor.txn", fake_txn(cur)), patch(
            "floxbee.automation.executor.resolve_credential",
            side_effect=ConfigurationError("missing"),
        ), patch("floxbee.whatsapp.dispatcher.send") as mock_send:
            summary = deliver(tenant, "r-1", [make_request()], now=now)

        mock_send.assert_not_called()
        assert summary.skipped_reason == "configuration_error:missing"
        assert summary.sent == 0
        (query, params), = cur.queries("INSERT INTO automation_logs")
        assert "contact_id IS NULL" in query
        assert params[3] == "config:2024-06-15"


class TestSendDelay:
    def test_default(self, monkeypatch):
        monkeypatch.delenv("AUTOMATION_SEND_DELAY_MS")
        assert send_delay_seconds() == 0.25

    def test_invalid_value_uses_default(self, monkeypatch):
        monkeypatch.setenv("AUTOMATION_SEND_DELAY_MS", "soon")
        assert send_delay_seconds() == 0.25

    def test_disabled(self):
        assert send_delay_seconds() == 0.0
