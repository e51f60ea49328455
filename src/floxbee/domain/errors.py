"""Engine error taxonomy.

Failures are isolated per candidate and per rule: evaluators and the runner
catch these, record them in the audit tables and move on to the next sibling.
"""

from __future__ import annotations

from typing import Literal

ConfigurationReason = Literal["missing", "inactive"]


class EngineError(Exception):
    """Base class for engine errors."""


class ConfigurationError(EngineError):
    """A tenant lacks usable delivery configuration.

    Attributes:
        reason: "missing" (no credential at all) or "inactive" (disabled by
            the tenant operator).
    """

    def __init__(self, reason: ConfigurationReason, integration_type: str = "whatsapp"):
        self.reason = reason
        self.integration_type = integration_type
        super().__init__(f"{integration_type} credential {reason}")


class ProviderError(EngineError):
    """The messaging provider rejected or failed a send.

    The dispatcher never raises this: provider failures come back as
    ``DeliveryOutcome.provider_error(code, message)`` and are written to the
    ledger as "error" rows. The class names the category for callers that
    need an exception, with the same code and message fields.
    """

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"provider error {code}: {message}")


class DataError(EngineError):
    """Malformed persisted or inbound data (rule config, missing fields)."""


class InvalidTransitionError(DataError):
    """A ticket change that the SLA rules do not allow."""


class NotFoundError(EngineError):
    """A referenced record does not exist for this tenant."""


class DuplicateSuppressed(EngineError):
    """The ledger already holds a row for this logical event.

    Raised by the ledger write when the uniqueness constraint fires. Callers
    treat it as "already fired", never as a failure.
    """

    def __init__(self, rule_id: str, dedupe_key: str):
        self.rule_id = rule_id
        self.dedupe_key = dedupe_key
        super().__init__(f"duplicate ledger row for rule {rule_id} ({dedupe_key})")
