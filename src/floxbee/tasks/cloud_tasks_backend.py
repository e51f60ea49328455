"""Cloud Tasks backend for GCP deployment."""

import json
import os
from datetime import datetime

from google.cloud import tasks_v2
from google.protobuf import timestamp_pb2

from floxbee.observability.logging import get_logger
from floxbee.observability.redaction import safe_log_context

logger = get_logger(__name__)

DEFAULT_QUEUE = "floxbee-default"


def task_name(parent: str, task_id: str) -> str:
    """Cloud Tasks name for a task_id; the name is what Cloud Tasks dedupes on."""
    safe_task_id = task_id.replace(":", "-").replace("/", "-")
    return f"{parent}/tasks/{safe_task_id}"


def enqueue_cloud_task(
    task_id: str,
    url_path: str,
    payload: dict,
    correlation_id: str | None = None,
    schedule_time: datetime | None = None,
) -> bool:
    """Create an HTTP task targeting the worker, authenticated with OIDC.

    Returns:
        True if the task was created or already existed.

    Raises:
        RuntimeError: If required env vars are not set.
    """
    project = os.environ.get("GOOGLE_CLOUD_PROJECT") or os.environ.get("GCP_PROJECT_ID")
    location = os.environ.get("GCP_LOCATION", "us-central1")
    queue = os.environ.get("GCP_TASKS_QUEUE", DEFAULT_QUEUE)
    worker_url = os.environ.get("WORKER_BASE_URL")
    oidc_service_account = os.environ.get("TASKS_OIDC_SERVICE_ACCOUNT")

    if not project:
        raise RuntimeError("GOOGLE_CLOUD_PROJECT or GCP_PROJECT_ID required")
    if not worker_url:
        raise RuntimeError("WORKER_BASE_URL required for Cloud Tasks")
    if not oidc_service_account:
        raise RuntimeError("TASKS_OIDC_SERVICE_ACCOUNT required for Cloud Tasks")

    client = tasks_v2.CloudTasksClient()
    parent = client.queue_path(project, location, queue)

    headers = {"Content-Type": "application/json"}
    if correlation_id:
        headers["X-Correlation-Id"] = correlation_id

    task = {
        "name": task_name(parent, task_id),
        "http_request": {
            "http_method": tasks_v2.HttpMethod.POST,
            "url": f"{worker_url.rstrip('/')}{url_path}",
            "headers": headers,
            "body": json.dumps(payload).encode(),
            "oidc_token": {
                "service_account_email": oidc_service_account,
                "audience": worker_url,
            },
        },
    }
    if schedule_time:
        timestamp = timestamp_pb2.Timestamp()
        timestamp.FromDatetime(schedule_time)
        task["schedule_time"] = timestamp

    try:
        response = client.create_task(parent=parent, task=task)
    except Exception as e:
        if "ALREADY_EXISTS" in str(e):
            logger.info(
                "cloud task already exists (dedupe)",
                extra={"extra_fields": safe_log_context(task_id=task_id)},
            )
            return True
        logger.exception(
            "failed to enqueue cloud task",
            extra={"extra_fields": safe_log_context(task_id=task_id, error=str(e))},
        )
        raise

    logger.info(
        "cloud task enqueued",
        extra={"extra_fields": safe_log_context(task_name=response.name, url_path=url_path)},
    )
    return True
