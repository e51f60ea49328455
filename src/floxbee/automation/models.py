"""Data passed between evaluators, the executor and the runner."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from floxbee.whatsapp.dispatcher import MessageTemplate


@dataclass(frozen=True)
class DeliveryRequest:
    """One message an evaluator decided to send.

    Attributes:
        rule_id: Rule that fired.
        contact_id: Ledger subject.
        recipient: Phone to deliver to (contact or profile phone). Never logged.
        body: Rendered text. Never logged.
        dedupe_key: Ledger key that makes this firing unique for the rule
            and contact (e.g. "day:2024-06-15", "attempt:2", "once").
        conversation_id: Conversation the message belongs to, if any.
        transcript: Whether to append the sent text to the conversation.
        details: Extra audit data stored with the ledger row (no PII).
    """

    rule_id: str
    contact_id: str
    recipient: str = field(repr=False)
    body: str = field(repr=False)
    dedupe_key: str
    conversation_id: str | None = None
    transcript: bool = True
    template: MessageTemplate | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class RuleSummary:
    rule_id: str
    candidates: int = 0
    sent: int = 0
    failed: int = 0
    duplicates: int = 0
    skipped_reason: str | None = None

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "rule_id": self.rule_id,
            "candidates": self.candidates,
            "sent": self.sent,
            "failed": self.failed,
            "duplicates": self.duplicates,
        }
        if self.skipped_reason:
            data["skipped_reason"] = self.skipped_reason
        return data


@dataclass
class SweepSummary:
    trigger_type: str
    tenants: int = 0
    tenants_failed: int = 0
    rules: list[RuleSummary] = field(default_factory=list)

    @property
    def sent(self) -> int:
        return sum(r.sent for r in self.rules)

    @property
    def failed(self) -> int:
        return sum(r.failed for r in self.rules)

    def as_dict(self) -> dict[str, Any]:
        return {
            "trigger_type": self.trigger_type,
            "tenants": self.tenants,
            "tenants_failed": self.tenants_failed,
            "sent": self.sent,
            "failed": self.failed,
            "rules": [r.as_dict() for r in self.rules],
        }
