"""Tenant resolution and per-tenant configuration.

A tenant is an owner profile. Agents carry ``created_by`` pointing at the
admin that created them and inherit that tenant for every configuration
lookup. Tenant configuration lives in ``system_settings``:

- ``tenant_config``: ``{"timezone": ..., "ai": {...}, "entity": {...}, "features": {...}}``
- ``system_preferences``: business hours and SLA hour overrides

Stored values are merged over defaults, so partial JSON is fine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from psycopg2.extensions import cursor as PgCursor

from floxbee.domain.errors import DataError
from floxbee.infra.db import fetchall, fetchone
from floxbee.infra.time import ensure_aware
from floxbee.observability.logging import get_logger
from floxbee.observability.redaction import safe_log_context

logger = get_logger(__name__)

DEFAULT_TIMEZONE = "America/Sao_Paulo"

# Weekdays use the dashboard's numbering: 0 = Sunday ... 6 = Saturday.
_DEFAULT_BUSINESS_DAYS = (1, 2, 3, 4, 5)

_SLA_PREFERENCE_KEYS = {
    "baixa": "slaLowPriority",
    "media": "slaMediumPriority",
    "alta": "slaHighPriority",
    "urgente": "slaUrgentPriority",
}


@dataclass(frozen=True)
class BusinessHours:
    enabled: bool = False
    start: time = time(8, 0)
    end: time = time(18, 0)
    days: tuple[int, ...] = _DEFAULT_BUSINESS_DAYS

    def is_open(self, local_dt: datetime) -> bool:
        """True when business hours are disabled or local_dt falls inside them."""
        if not self.enabled:
            return True
        # isoweekday: Monday=1..Sunday=7 -> dashboard numbering Sunday=0
        day = local_dt.isoweekday() % 7
        if day not in self.days:
            return False
        return self.start <= local_dt.time() < self.end


@dataclass(frozen=True)
class AiSettings:
    model: str = "gpt-4o-mini"
    # 0 disables the hand-back-to-bot sweep
    agent_inactivity_timeout_minutes: int = 0


@dataclass(frozen=True)
class TenantConfig:
    timezone: str = DEFAULT_TIMEZONE
    business_hours: BusinessHours = field(default_factory=BusinessHours)
    ai: AiSettings = field(default_factory=AiSettings)
    sla_hours: dict[str, int] | None = None

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@dataclass(frozen=True)
class Tenant:
    id: str
    config: TenantConfig = field(default_factory=TenantConfig)

    def local_now(self, now: datetime) -> datetime:
        return ensure_aware(now).astimezone(self.config.tz)


def _parse_hhmm(value: Any, default: time) -> time:
    if not isinstance(value, str):
        return default
    try:
        hours, minutes = value.strip().split(":")[:2]
        return time(int(hours), int(minutes))
    except ValueError:
        return default


def _int_or(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _valid_timezone(name: Any) -> str:
    if not isinstance(name, str) or not name:
        return DEFAULT_TIMEZONE
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(
            "unknown tenant timezone, using default",
            extra={"extra_fields": safe_log_context(timezone=name)},
        )
        return DEFAULT_TIMEZONE
    return name


def build_tenant_config(
    tenant_config: dict[str, Any] | None,
    preferences: dict[str, Any] | None,
) -> TenantConfig:
    """Merge the two stored settings documents over defaults."""
    tenant_config = tenant_config or {}
    preferences = preferences or {}

    ai_raw = tenant_config.get("ai") or {}
    ai = AiSettings(
        model=ai_raw.get("model") or preferences.get("aiModel") or AiSettings.model,
        agent_inactivity_timeout_minutes=max(
            0, _int_or(ai_raw.get("agentInactivityTimeoutMinutes"), 0)
        ),
    )

    days = preferences.get("businessDays")
    business_hours = BusinessHours(
        enabled=bool(preferences.get("businessHoursEnabled", False)),
        start=_parse_hhmm(preferences.get("businessHoursStart"), time(8, 0)),
        end=_parse_hhmm(preferences.get("businessHoursEnd"), time(18, 0)),
        days=tuple(int(d) for d in days) if isinstance(days, list) else _DEFAULT_BUSINESS_DAYS,
    )

    sla_hours = None
    if preferences.get("slaEnabled", True):
        overrides = {
            priority: _int_or(preferences.get(key), 0)
            for priority, key in _SLA_PREFERENCE_KEYS.items()
        }
        overrides = {k: v for k, v in overrides.items() if v > 0}
        sla_hours = overrides or None

    entity = tenant_config.get("entity") or {}
    timezone_name = tenant_config.get("timezone") or entity.get("timezone")

    return TenantConfig(
        timezone=_valid_timezone(timezone_name),
        business_hours=business_hours,
        ai=ai,
        sla_hours=sla_hours,
    )


def resolve_owner_id(cur: PgCursor, profile_id: str) -> str:
    """Effective tenant of a profile: its creator if it has one, else itself.

    Raises:
        DataError: Unknown profile.
    """
    row = fetchone(
        cur,
        "SELECT id, created_by FROM profiles WHERE id = %s",
        (profile_id,),
    )
    if row is None:
        raise DataError(f"unknown profile {profile_id}")
    return str(row[1]) if row[1] else str(row[0])


def _load_setting(cur: PgCursor, owner_id: str, key: str) -> dict[str, Any] | None:
    row = fetchone(
        cur,
        "SELECT value FROM system_settings WHERE owner_id = %s AND key = %s",
        (owner_id, key),
    )
    if row and isinstance(row[0], dict):
        return row[0]
    return None


def load_tenant_config(cur: PgCursor, owner_id: str) -> TenantConfig:
    return build_tenant_config(
        _load_setting(cur, owner_id, "tenant_config"),
        _load_setting(cur, owner_id, "system_preferences"),
    )


def resolve_tenant(cur: PgCursor, profile_id: str) -> Tenant:
    """Resolve the effective tenant of any profile and load its configuration."""
    owner_id = resolve_owner_id(cur, profile_id)
    return Tenant(id=owner_id, config=load_tenant_config(cur, owner_id))


def list_tenants_with_rules(cur: PgCursor, trigger_type: str) -> list[str]:
    """Effective owners having at least one active rule of a trigger type."""
    rows = fetchall(
        cur,
        """
        SELECT DISTINCT owner_id
        FROM automation_rules
        WHERE active AND trigger_type = %s
        ORDER BY 1
        """,
        (trigger_type,),
    )
    return [str(row[0]) for row in rows]


def list_tenants_with_agent_timeout(cur: PgCursor) -> list[str]:
    """Owners whose tenant_config sets a positive agent inactivity timeout."""
    rows = fetchall(
        cur,
        """
        SELECT owner_id
        FROM system_settings
        WHERE key = 'tenant_config'
          AND COALESCE((value -> 'ai' ->> 'agentInactivityTimeoutMinutes')::numeric, 0) > 0
        ORDER BY owner_id
        """,
    )
    return [str(row[0]) for row in rows]

