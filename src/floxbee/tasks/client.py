"""Tasks client with idempotent enqueue.

Backends, selected via the TASKS_BACKEND env var:
- inline (default): records the task without running it (dev/tests)
- http: POSTs the task to the worker
- cloud_tasks: creates a Google Cloud Tasks HTTP task
"""

import os
from datetime import datetime

TASKS_BACKEND = os.environ.get("TASKS_BACKEND", "inline")

TICKET_NOTIFY_PATH = "/tasks/tickets/notify"


class TasksClient:
    """Enqueue worker tasks, at most once per task_id per process.

    The worker endpoints dedupe on their own (ledger rows), so a task that
    is enqueued twice by two processes is still handled once.
    """

    def __init__(self, backend: str | None = None) -> None:
        self._seen_ids: set[str] = set()
        self._recorded: list[dict] = []
        self._backend = backend or TASKS_BACKEND

    def enqueue_http(
        self,
        task_id: str,
        url_path: str,
        payload: dict,
        correlation_id: str | None = None,
        schedule_time: datetime | None = None,
    ) -> bool:
        """Enqueue a task for a worker endpoint.

        Args:
            task_id: Unique identifier for idempotency.
            url_path: Worker endpoint path (e.g. "/tasks/tickets/notify").
            payload: Task data (ids only, no contact data).
            correlation_id: Optional correlation ID for tracing.
            schedule_time: Optional future execution time.

        Returns:
            True if the task was handed to the backend, False if task_id
            was already seen or the backend refused it.

        Raises:
            ValueError: If TASKS_BACKEND is unknown.
        """
        if task_id in self._seen_ids:
            return False

        self._seen_ids.add(task_id)

        if self._backend == "inline":
            self._recorded.append({
                "task_id": task_id,
                "url_path": url_path,
                "payload": payload,
                "correlation_id": correlation_id,
                "schedule_time": schedule_time,
            })
            return True

        elif self._backend == "http":
            from floxbee.tasks.http_backend import enqueue_http
            return enqueue_http(
                task_id, url_path, payload, correlation_id, schedule_time
            )

        elif self._backend == "cloud_tasks":
            from floxbee.tasks.cloud_tasks_backend import enqueue_cloud_task
            return enqueue_cloud_task(
                task_id, url_path, payload, correlation_id, schedule_time
            )

        else:
            raise ValueError(f"Unknown TASKS_BACKEND: {self._backend}")

    def enqueue_ticket_event(
        self,
        ticket_id: str,
        event_type: str,
        history_id: str,
        correlation_id: str | None = None,
    ) -> bool:
        """Ask the worker to send notifications for one ticket transition."""
        return self.enqueue_http(
            task_id=f"ticket-notify:{history_id}",
            url_path=TICKET_NOTIFY_PATH,
            payload={
                "ticket_id": ticket_id,
                "event_type": event_type,
                "history_id": history_id,
            },
            correlation_id=correlation_id,
        )

    def was_enqueued(self, task_id: str) -> bool:
        return task_id in self._seen_ids

    def get_recorded_tasks(self) -> list[dict]:
        """Tasks recorded by the inline backend (useful for testing)."""
        return list(self._recorded)

    def clear(self) -> None:
        self._seen_ids.clear()
        self._recorded.clear()
