"""Worker routes for automation sweeps and contact events.

Sweeps are triggered by Cloud Scheduler (or any caller holding task auth)
and carry no body; repeated or overlapping calls are safe because every send
goes through the automation ledger.
"""

from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from floxbee.api.task_auth import verify_task_auth
from floxbee.automation.agent_inactivity import run_agent_inactivity_sweep
from floxbee.automation.runner import run_sweep, run_welcome
from floxbee.domain.errors import DataError, NotFoundError
from floxbee.observability.correlation import get_correlation_id
from floxbee.observability.logging import get_logger
from floxbee.observability.redaction import safe_log_context

router = APIRouter(prefix="/tasks/automations", tags=["tasks"])

logger = get_logger(__name__)


def _authorize(request: Request) -> str | None:
    correlation_id = get_correlation_id()
    if not verify_task_auth(request):
        logger.warning(
            "task auth failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        raise HTTPException(status_code=401, detail="Unauthorized")
    return correlation_id


def _sweep(trigger_type: str, correlation_id: str | None) -> JSONResponse:
    try:
        summary = run_sweep(trigger_type, correlation_id=correlation_id)
    except Exception:
        logger.exception(
            "automation sweep failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id, trigger_type=trigger_type
                )
            },
        )
        return JSONResponse(
            status_code=500,
            content={"ok": False, "error": "processing failed"},
        )
    return JSONResponse(status_code=200, content={"ok": True, **summary.as_dict()})


@router.post("/birthday")
async def sweep_birthday(request: Request) -> JSONResponse:
    """Greet contacts whose birthday is today in the tenant's timezone."""
    return _sweep("birthday", _authorize(request))


@router.post("/no-response")
async def sweep_no_response(request: Request) -> JSONResponse:
    """Follow up on conversations still waiting for a reply."""
    return _sweep("no_response", _authorize(request))


@router.post("/schedule")
async def sweep_schedule(request: Request) -> JSONResponse:
    """Run scheduled broadcasts whose time has come."""
    return _sweep("schedule", _authorize(request))


@router.post("/agent-inactivity")
async def sweep_agent_inactivity(request: Request) -> JSONResponse:
    """Hand idle agent conversations back to the bot."""
    correlation_id = _authorize(request)
    try:
        result = run_agent_inactivity_sweep()
    except Exception:
        logger.exception(
            "agent inactivity sweep failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse(
            status_code=500,
            content={"ok": False, "error": "processing failed"},
        )
    return JSONResponse(status_code=200, content={"ok": True, **result})


@router.post("/welcome")
async def handle_welcome(request: Request) -> JSONResponse:
    """Handle a contact event (new_contact, first_message, keyword).

    Expected payload:
    - contact_id (required)
    - event_type (required)
    - conversation_id, rule_id, text (optional)
    """
    correlation_id = _authorize(request)

    try:
        payload: dict[str, Any] = await request.json()
    except Exception:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse(
            status_code=400,
            content={"ok": False, "error": "invalid json"},
        )
    if not isinstance(payload, dict):
        return JSONResponse(
            status_code=400,
            content={"ok": False, "error": "invalid json"},
        )

    contact_id = payload.get("contact_id", "")
    event_type = payload.get("event_type", "")
    if not contact_id or not event_type:
        logger.warning(
            "missing required fields",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    has_contact_id=bool(contact_id),
                    has_event_type=bool(event_type),
                )
            },
        )
        return JSONResponse(
            status_code=400,
            content={"ok": False, "error": "missing required fields"},
        )

    try:
        result = run_welcome(
            contact_id,
            event_type,
            conversation_id=payload.get("conversation_id"),
            rule_id=payload.get("rule_id"),
            text=payload.get("text"),
            correlation_id=correlation_id,
        )
    except NotFoundError:
        return JSONResponse(
            status_code=404,
            content={"ok": False, "error": "contact not found"},
        )
    except DataError as e:
        return JSONResponse(
            status_code=400,
            content={"ok": False, "error": str(e)},
        )
    except Exception:
        logger.exception(
            "welcome task failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse(
            status_code=500,
            content={"ok": False, "error": "processing failed"},
        )

    logger.info(
        "welcome task completed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                event_type=event_type,
                status=result.get("status"),
            )
        },
    )
    return JSONResponse(status_code=200, content={"ok": True, **result})
