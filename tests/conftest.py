"""Shared pytest fixtures for the engine tests."""
import sys
sys.dont_write_bytecode = True

from datetime import datetime, timezone  # noqa: E402

import pytest  # noqa: E402

from floxbee.infra.tenants import Tenant, TenantConfig  # noqa: E402


@pytest.fixture(autouse=True)
def _no_send_delay(monkeypatch):
    """Bulk sends pause between messages; tests run without the pause."""
    monkeypatch.setenv("AUTOMATION_SEND_DELAY_MS", "0")


@pytest.fixture
def tenant() -> Tenant:
    return Tenant(id="owner-1", config=TenantConfig(timezone="America/Sao_Paulo"))


@pytest.fixture
def now() -> datetime:
    # Saturday 2024-06-15 12:00 UTC = 09:00 in Sao Paulo
    return datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)
