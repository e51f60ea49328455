"""Worker route for ticket notifications."""

from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from floxbee.api.task_auth import verify_task_auth
from floxbee.automation.runner import run_ticket_event
from floxbee.domain.errors import DataError, NotFoundError
from floxbee.observability.correlation import get_correlation_id
from floxbee.observability.logging import get_logger
from floxbee.observability.redaction import safe_log_context

router = APIRouter(prefix="/tasks/tickets", tags=["tasks"])

logger = get_logger(__name__)


@router.post("/notify")
async def handle_notify(request: Request) -> JSONResponse:
    """Send staff and contact notifications for one ticket transition.

    Safe to redeliver: every (setting, recipient, history) and every
    (rule, contact, history) is sent at most once.

    Expected payload:
    - ticket_id (required)
    - event_type (required): "created" or "status_change"
    - history_id (required): ticket_history row of the transition
    """
    correlation_id = get_correlation_id()

    if not verify_task_auth(request):
        logger.warning(
            "task auth failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        payload: dict[str, Any] = await request.json()
    except Exception:
        return JSONResponse(
            status_code=400,
            content={"ok": False, "error": "invalid json"},
        )
    if not isinstance(payload, dict):
        return JSONResponse(
            status_code=400,
            content={"ok": False, "error": "invalid json"},
        )

    ticket_id = payload.get("ticket_id", "")
    event_type = payload.get("event_type", "")
    history_id = payload.get("history_id", "")
    if not ticket_id or not event_type or not history_id:
        logger.warning(
            "missing required fields",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    has_ticket_id=bool(ticket_id),
                    has_event_type=bool(event_type),
                    has_history_id=bool(history_id),
                )
            },
        )
        return JSONResponse(
            status_code=400,
            content={"ok": False, "error": "missing required fields"},
        )

    try:
        result = run_ticket_event(
            ticket_id, event_type, history_id, correlation_id=correlation_id
        )
    except NotFoundError:
        return JSONResponse(
            status_code=404,
            content={"ok": False, "error": "ticket not found"},
        )
    except DataError as e:
        return JSONResponse(
            status_code=400,
            content={"ok": False, "error": str(e)},
        )
    except Exception:
        logger.exception(
            "ticket notify task failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id, ticket_id=ticket_id
                )
            },
        )
        return JSONResponse(
            status_code=500,
            content={"ok": False, "error": "processing failed"},
        )

    return JSONResponse(status_code=200, content={"ok": True, **result})
