"""Internal automation rule endpoints.

POST  /internal/rules       → create (trigger config validated)
PATCH /internal/rules/{id}  → partial update

Invalid trigger configurations are rejected with 422 before they are
stored, so evaluators only see well-formed rules.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Path
from pydantic import BaseModel, ConfigDict

from floxbee.api.task_auth import require_task_auth
from floxbee.domain.errors import DataError, NotFoundError
from floxbee.infra.db import txn
from floxbee.infra.repositories import rules_repository
from floxbee.infra.repositories.rules_repository import AutomationRule
from floxbee.infra.tenants import resolve_owner_id
from floxbee.infra.time import utc_now
from floxbee.observability.logging import get_logger
from floxbee.observability.redaction import safe_log_context

logger = get_logger(__name__)

router = APIRouter(
    prefix="/internal/rules",
    tags=["internal"],
    dependencies=[Depends(require_task_auth)],
)


class CreateRuleRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    actor_id: str
    name: str
    trigger_config: dict[str, Any]
    message: str | None = None
    template_id: str | None = None
    active: bool = True


class UpdateRuleRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    actor_id: str
    name: str | None = None
    trigger_config: dict[str, Any] | None = None
    message: str | None = None
    template_id: str | None = None
    active: bool | None = None


def _rule_to_dict(rule: AutomationRule) -> dict:
    return {
        "id": rule.id,
        "name": rule.name,
        "active": rule.active,
        "trigger_type": rule.trigger_type,
        "trigger_config": rule.trigger_config,
        "message": rule.message,
        "template_id": rule.template_id,
    }


@router.post("", status_code=201)
def create_rule(body: CreateRuleRequest) -> dict:
    try:
        with txn() as cur:
            owner_id = resolve_owner_id(cur, body.actor_id)
            rule = rules_repository.insert_rule(
                cur,
                owner_id=owner_id,
                name=body.name,
                trigger_config=body.trigger_config,
                message=body.message,
                template_id=body.template_id,
                active=body.active,
                now=utc_now(),
            )
    except DataError as e:
        raise HTTPException(status_code=422, detail=str(e))

    logger.info(
        "automation rule created",
        extra={
            "extra_fields": safe_log_context(rule_id=rule.id, trigger_type=rule.trigger_type)
        },
    )
    return _rule_to_dict(rule)


@router.patch("/{rule_id}")
def update_rule(
    body: UpdateRuleRequest,
    rule_id: str = Path(..., description="Rule UUID"),
) -> dict:
    """Update the fields present in the body; an explicit null clears message/template."""
    changes = {
        name: getattr(body, name)
        for name in ("name", "trigger_config", "message", "template_id", "active")
        if name in body.model_fields_set
    }
    try:
        with txn() as cur:
            owner_id = resolve_owner_id(cur, body.actor_id)
            rule = rules_repository.update_rule(
                cur, rule_id, owner_id=owner_id, changes=changes, now=utc_now()
            )
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Rule not found")
    except DataError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return _rule_to_dict(rule)
