"""Tests that all worker endpoints require authentication.

Verifies that endpoints protected by verify_task_auth return 401
when called without credentials, and reach the handler when auth passes.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from floxbee.api.factory import create_app
from floxbee.api.task_auth import (
    INTERNAL_SECRET_HEADER,
    LOCAL_DEV_AUDIENCE,
    verify_task_oidc,
)

TASK_ENDPOINTS = [
    "/tasks/automations/birthday",
    "/tasks/automations/no-response",
    "/tasks/automations/schedule",
    "/tasks/automations/agent-inactivity",
    "/tasks/automations/welcome",
    "/tasks/tickets/notify",
]


@pytest.fixture(autouse=True)
def _oidc_env(monkeypatch):
    monkeypatch.setenv("TASKS_OIDC_AUDIENCE", "https://worker.example.com")
    monkeypatch.delenv("INTERNAL_TASK_SECRET", raising=False)


@pytest.fixture
def worker_client():
    """Create a test client for the worker app (no auth mock)."""
    return TestClient(create_app(role="worker"))


@pytest.mark.parametrize("path", TASK_ENDPOINTS)
def test_task_endpoint_without_auth_returns_401(worker_client, path):
    response = worker_client.post(path, json={})
    assert response.status_code == 401


@pytest.mark.parametrize("path", TASK_ENDPOINTS)
def test_task_endpoint_with_invalid_token_returns_401(worker_client, path):
    with patch("floxbee.api.task_auth.id_token.verify_oauth2_token", side_effect=ValueError("bad")):
        response = worker_client.post(
            path, json={}, headers={"Authorization": "Bearer not-a-token"}
        )
    assert response.status_code == 401


def test_internal_endpoints_without_auth_return_401(worker_client):
    assert worker_client.post("/internal/tickets", json={}).status_code == 401
    assert worker_client.post("/internal/tickets/t-1/transition", json={}).status_code == 401
    assert worker_client.get("/internal/tickets/sla-report?owner_id=o").status_code == 401
    assert worker_client.post("/internal/rules", json={}).status_code == 401
    assert worker_client.patch("/internal/rules/r-1", json={}).status_code == 401


def test_valid_token_reaches_handler(worker_client):
    with patch(
        "floxbee.api.task_auth.id_token.verify_oauth2_token",
        return_value={"email": "tasks@project.iam.gserviceaccount.com"},
    ):
        response = worker_client.post(
            "/tasks/tickets/notify", json={}, headers={"Authorization": "Bearer token"}
        )
    # Missing fields -> 400, but not 401
    assert response.status_code == 400


class TestVerifyTaskOidc:
    def test_missing_audience_fails_closed(self, monkeypatch):
        monkeypatch.delenv("TASKS_OIDC_AUDIENCE")
        with patch("floxbee.api.task_auth.id_token.verify_oauth2_token") as mock_verify:
            assert verify_task_oidc("token") is False
        mock_verify.assert_not_called()

    def test_service_account_mismatch(self, monkeypatch):
        monkeypatch.setenv("TASKS_OIDC_SERVICE_ACCOUNT", "tasks@project.iam.gserviceaccount.com")
        with patch(
            "floxbee.api.task_auth.id_token.verify_oauth2_token",
            return_value={"email": "someone@else.com"},
        ):
            assert verify_task_oidc("token") is False

    def test_audience_passed_to_verifier(self):
        with patch(
            "floxbee.api.task_auth.id_token.verify_oauth2_token", return_value={}
        ) as mock_verify:
            assert verify_task_oidc("token") is True
        assert mock_verify.call_args.kwargs["audience"] == "https://worker.example.com"


class TestLocalDevSecret:
    def test_secret_accepted_with_local_audience(self, monkeypatch, worker_client):
        monkeypatch.setenv("TASKS_OIDC_AUDIENCE", LOCAL_DEV_AUDIENCE)
        monkeypatch.setenv("INTERNAL_TASK_SECRET", "s3cret")
        response = worker_client.post(
            "/tasks/tickets/notify", json={}, headers={INTERNAL_SECRET_HEADER: "s3cret"}
        )
        assert response.status_code == 400

    def test_wrong_secret_rejected(self, monkeypatch, worker_client):
        monkeypatch.setenv("TASKS_OIDC_AUDIENCE", LOCAL_DEV_AUDIENCE)
        monkeypatch.setenv("INTERNAL_TASK_SECRET", "s3cret")
        response = worker_client.post(
            "/tasks/tickets/notify", json={}, headers={INTERNAL_SECRET_HEADER: "guess"}
        )
        assert response.status_code == 401

    def test_secret_ignored_outside_local_dev(self, monkeypatch, worker_client):
        monkeypatch.setenv("INTERNAL_TASK_SECRET", "s3cret")
        response = worker_client.post(
            "/tasks/tickets/notify", json={}, headers={INTERNAL_SECRET_HEADER: "s3cret"}
        )
        assert response.status_code == 401
