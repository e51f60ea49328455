"""Ledger uniqueness against a real database (requires Postgres).

Runs against a database migrated with ``alembic upgrade head``.
"""

import os
import threading
import uuid
from datetime import date, datetime, timezone

import pytest

from floxbee.automation import ledger
from floxbee.domain.errors import DuplicateSuppressed
from floxbee.infra.db import txn

# Skip all tests if DATABASE_URL is not set
pytestmark = pytest.mark.skipif(
    not os.environ.get("DATABASE_URL"),
    reason="DATABASE_URL not set - skipping ledger db tests",
)

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def seeded():
    """Owner, contact and birthday rule; removed after the test."""
    owner_id = str(uuid.uuid4())
    contact_id = str(uuid.uuid4())
    rule_id = str(uuid.uuid4())
    with txn() as cur:
        cur.execute("INSERT INTO profiles (id, name) VALUES (%s, %s)", (owner_id, "Owner Ledger"))
        cur.execute(
            "INSERT INTO contacts (id, owner_id, name, phone) VALUES (%s, %s, %s, %s)",
            (contact_id, owner_id, "Contato Ledger", "11900000000"),
        )
        cur.execute(
            """
            INSERT INTO automation_rules (id, owner_id, name, trigger_type, trigger_config, message)
            VALUES (%s, %s, %s, 'birthday', '{"type": "birthday"}'::jsonb, %s)
            """,
            (rule_id, owner_id, "Aniversário", "Parabéns!"),
        )
    yield owner_id, contact_id, rule_id
    with txn() as cur:
        cur.execute("DELETE FROM automation_logs WHERE owner_id = %s", (owner_id,))
        cur.execute("DELETE FROM automation_rules WHERE owner_id = %s", (owner_id,))
        cur.execute("DELETE FROM contacts WHERE owner_id = %s", (owner_id,))
        cur.execute("DELETE FROM profiles WHERE id = %s", (owner_id,))


def _count(rule_id: str) -> int:
    with txn() as cur:
        cur.execute("SELECT COUNT(*) FROM automation_logs WHERE rule_id = %s", (rule_id,))
        return cur.fetchone()[0]


def _record(owner_id, contact_id, rule_id, key="day:2024-06-15"):
    with txn() as cur:
        return ledger.record(
            cur,
            owner_id=owner_id,
            rule_id=rule_id,
            contact_id=contact_id,
            status="success",
            dedupe_key=key,
            now=NOW,
        )


def test_second_record_is_suppressed(seeded):
    owner_id, contact_id, rule_id = seeded

    _record(owner_id, contact_id, rule_id)
    with pytest.raises(DuplicateSuppressed):
        _record(owner_id, contact_id, rule_id)

    assert _count(rule_id) == 1


def test_other_key_is_a_new_row(seeded):
    owner_id, contact_id, rule_id = seeded

    _record(owner_id, contact_id, rule_id, "day:2024-06-15")
    _record(owner_id, contact_id, rule_id, "day:2025-06-15")

    assert _count(rule_id) == 2


def test_has_fired_sees_recorded_row(seeded):
    owner_id, contact_id, rule_id = seeded
    _record(owner_id, contact_id, rule_id)

    with txn() as cur:
        assert ledger.has_fired(cur, rule_id, contact_id, dedupe_key="day:2024-06-15")
        assert not ledger.has_fired(cur, rule_id, contact_id, dedupe_key="day:2025-06-15")


def test_concurrent_records_keep_one_row(seeded):
    owner_id, contact_id, rule_id = seeded
    results: list[str] = []
    errors: list[Exception] = []

    def worker():
        try:
            _record(owner_id, contact_id, rule_id)
            results.append("recorded")
        except DuplicateSuppressed:
            results.append("duplicate")
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert not errors
    assert results.count("recorded") == 1
    assert results.count("duplicate") == 4
    assert _count(rule_id) == 1


def test_configuration_error_once_per_day(seeded):
    owner_id, _, rule_id = seeded

    def audit(day):
        with txn() as cur:
            return ledger.record_configuration_error(
                cur,
                owner_id=owner_id,
                rule_id=rule_id,
                reason="missing",
                integration_type="whatsapp",
                day=day,
                now=NOW,
            )

    assert audit(date(2024, 6, 15)) is True
    assert audit(date(2024, 6, 15)) is False
    assert audit(date(2024, 6, 16)) is True
    assert _count(rule_id) == 2
