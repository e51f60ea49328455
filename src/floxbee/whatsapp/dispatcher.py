"""Outbound WhatsApp delivery via Meta Cloud API.

One HTTP POST per call and no retry: the caller records the outcome and moves
on. Provider failures come back as a DeliveryOutcome, never as an exception.

Security: NEVER log the recipient phone, the body or the access token.
Only hashes and lengths.
"""

from __future__ import annotations

import http.client
import json
import os
import re
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Literal

from floxbee.infra.credentials import Credential
from floxbee.observability.logging import get_logger
from floxbee.observability.redaction import hash_identifier, safe_log_context

logger = get_logger(__name__)

HTTP_TIMEOUT = 10

DEFAULT_GRAPH_API_VERSION = "v18.0"
DEFAULT_COUNTRY_CODE = "55"

# country code + area code + subscriber; shorter numbers are national
MIN_INTERNATIONAL_DIGITS = 12

_NON_DIGITS = re.compile(r"\D")


@dataclass(frozen=True)
class MessageTemplate:
    """A provider-approved template message."""

    name: str
    language: str = "pt_BR"
    components: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class DeliveryOutcome:
    status: Literal["sent", "provider_error"]
    message_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "sent"

    @classmethod
    def sent(cls, message_id: str) -> "DeliveryOutcome":
        return cls(status="sent", message_id=message_id)

    @classmethod
    def provider_error(cls, code: str, message: str) -> "DeliveryOutcome":
        return cls(status="provider_error", error_code=code, error_message=message)


def normalize_phone(raw: str | None, country_code: str | None = None) -> str:
    """Digits only, with the country code prefixed when missing.

    A leading "+" marks the number as international. Otherwise the number
    already carries the country code only when it is long enough; a national
    number whose area code equals the country code (e.g. 55 in Brazil) still
    gets the prefix.

    Returns "" for input without digits.
    """
    digits = _NON_DIGITS.sub("", raw or "")
    if not digits:
        return ""
    if (raw or "").strip().startswith("+"):
        return digits
    code = country_code or os.environ.get("DEFAULT_COUNTRY_CODE", DEFAULT_COUNTRY_CODE)
    if digits.startswith(code) and len(digits) >= MIN_INTERNATIONAL_DIGITS:
        return digits
    return code + digits


def _api_url(phone_number_id: str) -> str:
    version = os.environ.get("META_GRAPH_API_VERSION", DEFAULT_GRAPH_API_VERSION)
    return f"https://graph.facebook.com/{version}/{phone_number_id}/messages"


def build_payload(
    recipient: str,
    body: str,
    template: MessageTemplate | None = None,
) -> dict[str, Any]:
    if template is not None:
        return {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": recipient,
            "type": "template",
            "template": {
                "name": template.name,
                "language": {"code": template.language},
                "components": template.components,
            },
        }
    return {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": recipient,
        "type": "text",
        "text": {"body": body},
    }


def _do_request(url: str, data: bytes, headers: dict[str, str]) -> dict[str, Any]:
    """Execute HTTP POST request. Raises on error."""
    req = urllib.request.Request(url, data=data, headers=headers, method="POST")
    with urllib.request.urlopen(req, timeout=HTTP_TIMEOUT) as resp:
        return json.loads(resp.read().decode())


def _parse_http_error(exc: urllib.error.HTTPError) -> tuple[str, str]:
    """Extract (code, message) from a Graph API error response."""
    code = str(exc.code)
    message = exc.reason if isinstance(exc.reason, str) else "http error"
    try:
        raw = exc.read() if exc.fp is not None else b""
        data = json.loads(raw.decode() or "{}")
    except (ValueError, OSError):
        return code, message
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        if error.get("code") is not None:
            code = str(error["code"])
        if error.get("message"):
            message = str(error["message"])
    return code, message


def send(
    credential: Credential,
    recipient: str,
    body: str,
    *,
    template: MessageTemplate | None = None,
    correlation_id: str | None = None,
) -> DeliveryOutcome:
    """Send one message.

    Args:
        credential: Resolved WhatsApp credential of the tenant.
        recipient: Recipient phone, any formatting. NEVER logged.
        body: Rendered text. NEVER logged. Ignored for template sends.
        template: Send a template message instead of free text.
        correlation_id: Optional correlation ID for tracing.

    Returns:
        DeliveryOutcome.sent(message_id) or DeliveryOutcome.provider_error(code, message).
    """
    to = normalize_phone(recipient)
    log_ctx = safe_log_context(
        correlationId=correlation_id or "",
        tenant_id=credential.owner_id,
        to_hash=hash_identifier(to) if to else "",
        text_len=len(body or ""),
        message_type="template" if template else "text",
        credential_source=credential.source,
    )

    if not to:
        logger.warning("recipient has no phone digits", extra={"extra_fields": log_ctx})
        return DeliveryOutcome.provider_error("invalid_recipient", "recipient has no phone number")
    if template is None and not (body or "").strip():
        logger.warning("empty message body", extra={"extra_fields": log_ctx})
        return DeliveryOutcome.provider_error("empty_body", "message body is empty")

    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {credential.access_token}",
    }
    data = json.dumps(build_payload(to, body, template)).encode("utf-8")

    logger.info("sending outbound message via meta", extra={"extra_fields": log_ctx})

    try:
        response = _do_request(_api_url(credential.phone_number_id), data, headers)
    except urllib.error.HTTPError as e:
        code, message = _parse_http_error(e)
        logger.error(
            "outbound send via meta rejected",
            extra={
                "extra_fields": safe_log_context(**log_ctx, http_status=e.code, error_code=code)
            },
        )
        return DeliveryOutcome.provider_error(code, message)
    except (urllib.error.URLError, http.client.HTTPException, OSError) as e:
        logger.error(
            "outbound send via meta failed",
            extra={"extra_fields": safe_log_context(**log_ctx, error_type=type(e).__name__)},
        )
        return DeliveryOutcome.provider_error("network_error", type(e).__name__)
    except ValueError:
        # 2xx with an unreadable body: the provider accepted the message
        logger.warning(
            "outbound send via meta accepted without a readable body",
            extra={"extra_fields": log_ctx},
        )
        return DeliveryOutcome.sent("")

    messages = response.get("messages") if isinstance(response, dict) else None
    message_id = ""
    if isinstance(messages, list) and messages and isinstance(messages[0], dict):
        message_id = str(messages[0].get("id") or "")

    logger.info(
        "outbound message sent via meta",
        extra={"extra_fields": safe_log_context(**log_ctx, has_message_id=bool(message_id))},
    )
    return DeliveryOutcome.sent(message_id)
