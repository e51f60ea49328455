"""Automation trigger configuration.

Each automation rule stores a JSON trigger configuration. It is parsed into
one of a closed set of frozen dataclasses, so evaluators never read loose
dictionary keys. Parsing runs when a rule is saved and again when it is
evaluated.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Union

from floxbee.domain.errors import DataError
from floxbee.infra.time import ensure_aware

TICKET_STATUSES = ("aberto_ia", "em_analise", "pendente", "concluido", "cancelado")

DEFAULT_NO_RESPONSE_DELAY_MINUTES = 15
DEFAULT_NO_RESPONSE_MAX_ATTEMPTS = 1


@dataclass(frozen=True)
class KeywordTrigger:
    keywords: tuple[str, ...]
    type: str = "keyword"

    def matches(self, text: str | None) -> bool:
        """Case-insensitive containment of any keyword. No text matches nothing."""
        if not text:
            return False
        lowered = text.lower()
        return any(k.lower() in lowered for k in self.keywords)


@dataclass(frozen=True)
class NewContactTrigger:
    type: str = "new_contact"


@dataclass(frozen=True)
class FirstMessageTrigger:
    type: str = "first_message"


@dataclass(frozen=True)
class NoResponseTrigger:
    delay_minutes: int = DEFAULT_NO_RESPONSE_DELAY_MINUTES
    max_attempts: int = DEFAULT_NO_RESPONSE_MAX_ATTEMPTS
    type: str = "no_response"


@dataclass(frozen=True)
class ScheduleTrigger:
    schedule_at: datetime
    target_tag: str | None = None
    type: str = "schedule"


@dataclass(frozen=True)
class TicketStatusTrigger:
    status_from: str | None = None
    status_to: str | None = None
    type: str = "ticket_status"

    def matches(self, old_status: str | None, new_status: str | None) -> bool:
        if self.status_from is not None and self.status_from != old_status:
            return False
        if self.status_to is not None and self.status_to != new_status:
            return False
        return True


@dataclass(frozen=True)
class BirthdayTrigger:
    type: str = "birthday"


TriggerConfig = Union[
    KeywordTrigger,
    NewContactTrigger,
    FirstMessageTrigger,
    NoResponseTrigger,
    ScheduleTrigger,
    TicketStatusTrigger,
    BirthdayTrigger,
]

# Legacy Portuguese spelling still present in older rows.
_TYPE_ALIASES = {"aniversario": "birthday"}

TRIGGER_TYPES = (
    "keyword",
    "new_contact",
    "first_message",
    "no_response",
    "schedule",
    "ticket_status",
    "birthday",
)


def normalize_trigger_type(value: str) -> str:
    return _TYPE_ALIASES.get(value, value)


def _positive_int(raw: dict[str, Any], key: str, default: int) -> int:
    value = raw.get(key)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise DataError(f"{key} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise DataError(f"{key} must be an integer") from e
    if number != float(value) or number < 1:
        raise DataError(f"{key} must be a positive integer")
    return number


def _parse_datetime(value: Any, key: str) -> datetime:
    if isinstance(value, datetime):
        return ensure_aware(value)
    if not isinstance(value, str) or not value:
        raise DataError(f"{key} is required")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_aware(datetime.fromisoformat(text))
    except ValueError as e:
        raise DataError(f"{key} is not an ISO-8601 datetime") from e


def _optional_status(raw: dict[str, Any], key: str) -> str | None:
    value = raw.get(key)
    if value in (None, ""):
        return None
    if value not in TICKET_STATUSES:
        raise DataError(f"{key} must be one of {', '.join(TICKET_STATUSES)}")
    return value


def _optional_str(raw: dict[str, Any], key: str) -> str | None:
    value = raw.get(key)
    if value in (None, ""):
        return None
    if not isinstance(value, str):
        raise DataError(f"{key} must be a string")
    return value.strip() or None


def parse_trigger_config(raw: Any, trigger_type: str | None = None) -> TriggerConfig:
    """Parse a stored trigger configuration.

    Args:
        raw: The rule's trigger_config JSON (dict). May be empty for kinds
            without parameters when trigger_type is given.
        trigger_type: The rule's trigger_type column, used when the JSON
            does not carry its own "type".

    Raises:
        DataError: Unknown type, missing required field or invalid value.
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise DataError("trigger_config must be an object")

    kind = raw.get("type") or trigger_type
    if not kind:
        raise DataError("trigger type is required")
    kind = normalize_trigger_type(str(kind))
    if trigger_type and normalize_trigger_type(trigger_type) != kind:
        raise DataError(f"trigger_config type {kind} does not match rule type {trigger_type}")

    if kind == "keyword":
        keywords = raw.get("keywords")
        if isinstance(keywords, str):
            keywords = keywords.split(",")
        if not isinstance(keywords, list):
            raise DataError("keywords must be a list")
        cleaned = tuple(str(k).strip() for k in keywords if str(k).strip())
        if not cleaned:
            raise DataError("keyword trigger needs at least one keyword")
        return KeywordTrigger(keywords=cleaned)

    if kind == "new_contact":
        return NewContactTrigger()

    if kind == "first_message":
        return FirstMessageTrigger()

    if kind == "no_response":
        return NoResponseTrigger(
            delay_minutes=_positive_int(raw, "delay_minutes", DEFAULT_NO_RESPONSE_DELAY_MINUTES),
            max_attempts=_positive_int(raw, "max_attempts", DEFAULT_NO_RESPONSE_MAX_ATTEMPTS),
        )

    if kind == "schedule":
        return ScheduleTrigger(
            schedule_at=_parse_datetime(raw.get("schedule_at"), "schedule_at"),
            target_tag=_optional_str(raw, "target_tag"),
        )

    if kind == "ticket_status":
        return TicketStatusTrigger(
            status_from=_optional_status(raw, "status_from"),
            status_to=_optional_status(raw, "status_to"),
        )

    if kind == "birthday":
        return BirthdayTrigger()

    raise DataError(f"unknown trigger type: {kind}")


def serialize_trigger_config(config: TriggerConfig) -> dict[str, Any]:
    """Canonical JSON form written back on save."""
    if isinstance(config, KeywordTrigger):
        return {"type": config.type, "keywords": list(config.keywords)}
    if isinstance(config, NoResponseTrigger):
        return {
            "type": config.type,
            "delay_minutes": config.delay_minutes,
            "max_attempts": config.max_attempts,
        }
    if isinstance(config, ScheduleTrigger):
        data: dict[str, Any] = {"type": config.type, "schedule_at": config.schedule_at.isoformat()}
        if config.target_tag:
            data["target_tag"] = config.target_tag
        return data
    if isinstance(config, TicketStatusTrigger):
        return {
            "type": config.type,
            "status_from": config.status_from,
            "status_to": config.status_to,
        }
    return {"type": config.type}
