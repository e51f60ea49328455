"""Shared test helpers (plain functions and classes, not fixtures)."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any


class FakeCursor:
    """Cursor stub answering queries by substring.

    ``on(fragment, rows)`` registers the rows returned for the next query
    containing ``fragment``. Registering the same fragment several times
    queues answers; the last one keeps being returned. Unmatched queries
    return no rows.
    """

    def __init__(self) -> None:
        self.executed: list[tuple[str, Any]] = []
        self._answers: list[tuple[str, list[list[tuple]]]] = []
        self._rows: list[tuple] = []
        self.rowcount = 0

    def on(self, fragment: str, rows: list[tuple] | None = None) -> "FakeCursor":
        for existing, queue in self._answers:
            if existing == fragment:
                queue.append(list(rows or []))
                return self
        self._answers.append((fragment, [list(rows or [])]))
        return self

    def execute(self, query: str, params: Any = None) -> None:
        self.executed.append((query, params))
        self._rows = []
        for fragment, queue in self._answers:
            if fragment in query:
                self._rows = list(queue.pop(0) if len(queue) > 1 else queue[0])
                break
        self.rowcount = len(self._rows)

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)

    def queries(self, fragment: str) -> list[tuple[str, Any]]:
        return [(q, p) for q, p in self.executed if fragment in q]

    def __enter__(self):
        return self

    def __exit__(self, *args):
        return False


def fake_txn(cur: FakeCursor):
    """Replacement for floxbee.infra.db.txn yielding the same cursor every time."""

    @contextmanager
    def _txn(conn=None):
        yield cur

    return _txn


class LogRecorder:
    """Records logger calls so tests can assert on what was (not) logged."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple, dict]] = []

    def _record(self, level: str, *args, **kwargs) -> None:
        self.calls.append((level, args, kwargs))

    def info(self, *args, **kwargs):
        self._record("info", *args, **kwargs)

    def warning(self, *args, **kwargs):
        self._record("warning", *args, **kwargs)

    def error(self, *args, **kwargs):
        self._record("error", *args, **kwargs)

    def exception(self, *args, **kwargs):
        self._record("exception", *args, **kwargs)

    def debug(self, *args, **kwargs):
        self._record("debug", *args, **kwargs)

    def messages(self, level: str | None = None) -> list[str]:
        return [str(args[0]) for lvl, args, _ in self.calls if level is None or lvl == level]

    def get_all_logged_content(self) -> str:
        return " ".join(f"{args!r} {kwargs!r}" for _, args, kwargs in self.calls)

    def has_extra_field(self, key: str) -> bool:
        for _, _, kwargs in self.calls:
            if key in kwargs.get("extra", {}).get("extra_fields", {}):
                return True
        return False


def contact_row(
    contact_id: str = "c-1",
    *,
    owner_id: str = "owner-1",
    name: str = "Maria Souza",
    phone: str | None = "11987654321",
    tags: list[str] | None = None,
    birth_date=None,
    active: bool = True,
) -> tuple:
    """Row shaped like contacts_repository.CONTACT_COLUMNS."""
    return (
        contact_id,
        owner_id,
        name,
        phone,
        "maria@example.com",
        "MAT-1",
        "Saude",
        tags or [],
        birth_date,
        active,
    )


def rule_row(
    rule_id: str = "r-1",
    *,
    owner_id: str = "owner-1",
    trigger_type: str = "birthday",
    trigger_config: dict | None = None,
    message: str | None = None,
    template_body: str | None = None,
    active: bool = True,
) -> tuple:
    """Row shaped like rules_repository._RULE_COLUMNS."""
    return (
        rule_id,
        owner_id,
        f"rule {rule_id}",
        active,
        trigger_type,
        trigger_config if trigger_config is not None else {"type": trigger_type},
        message,
        None,
        template_body,
        None,
    )
