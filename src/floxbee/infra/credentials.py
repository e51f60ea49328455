"""Per-tenant integration credentials.

Credentials live in ``integrations`` (one row per owner and integration
type). For WhatsApp the tenant row is preferred; the platform-wide
WHATSAPP_ACCESS_TOKEN / WHATSAPP_PHONE_NUMBER_ID pair is used only when the
tenant has no usable row. A row the tenant switched off is never replaced
by the platform credential.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Literal

from psycopg2.extensions import cursor as PgCursor

from floxbee.domain.errors import ConfigurationError
from floxbee.infra.db import fetchone
from floxbee.observability.logging import get_logger
from floxbee.observability.redaction import safe_log_context

logger = get_logger(__name__)

IntegrationType = Literal["whatsapp", "openai", "smtp", "webhook"]
INTEGRATION_TYPES = ("whatsapp", "openai", "smtp", "webhook")

# Fields a config must carry to be usable.
_REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "whatsapp": ("access_token", "phone_number_id"),
    "openai": ("api_key",),
    "smtp": ("host",),
    "webhook": ("url",),
}


@dataclass(frozen=True)
class Credential:
    """Resolved integration credential.

    Attributes:
        owner_id: Tenant the credential was resolved for.
        integration_type: whatsapp, openai, smtp or webhook.
        config: Provider config (tokens included; never log it).
        source: "tenant" or "environment".
    """

    owner_id: str
    integration_type: str
    config: dict[str, Any] = field(repr=False)
    source: Literal["tenant", "environment"] = "tenant"

    @property
    def access_token(self) -> str:
        return str(self.config.get("access_token") or "")

    @property
    def phone_number_id(self) -> str:
        return str(self.config.get("phone_number_id") or "")


def _is_complete(integration_type: str, config: dict[str, Any]) -> bool:
    return all(config.get(key) for key in _REQUIRED_FIELDS.get(integration_type, ()))


def _environment_whatsapp() -> dict[str, str] | None:
    token = os.environ.get("WHATSAPP_ACCESS_TOKEN", "")
    phone_number_id = os.environ.get("WHATSAPP_PHONE_NUMBER_ID", "")
    if token and phone_number_id:
        return {"access_token": token, "phone_number_id": phone_number_id}
    return None


def resolve_credential(
    cur: PgCursor,
    tenant_id: str,
    integration_type: str = "whatsapp",
) -> Credential:
    """Resolve the credential a tenant sends with.

    Raises:
        ConfigurationError: reason "inactive" when the tenant disabled the
            integration, "missing" when neither the tenant nor the
            environment provides a complete credential.
    """
    if integration_type not in INTEGRATION_TYPES:
        raise ValueError(f"unknown integration type: {integration_type}")

    row = fetchone(
        cur,
        """
        SELECT config, is_active
        FROM integrations
        WHERE owner_id = %s AND integration_type = %s
        """,
        (tenant_id, integration_type),
    )

    if row is not None:
        config = row[0] if isinstance(row[0], dict) else {}
        is_active = bool(row[1])
        if not is_active:
            logger.warning(
                "integration disabled for tenant",
                extra={
                    "extra_fields": safe_log_context(
                        tenant_id=tenant_id, integration_type=integration_type
                    )
                },
            )
            raise ConfigurationError("inactive", integration_type)
        if _is_complete(integration_type, config):
            return Credential(
                owner_id=tenant_id,
                integration_type=integration_type,
                config=dict(config),
            )

    if integration_type == "whatsapp":
        env_config = _environment_whatsapp()
        if env_config:
            logger.info(
                "using platform whatsapp credential",
                extra={"extra_fields": safe_log_context(tenant_id=tenant_id)},
            )
            return Credential(
                owner_id=tenant_id,
                integration_type=integration_type,
                config=env_config,
                source="environment",
            )

    raise ConfigurationError("missing", integration_type)
