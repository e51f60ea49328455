"""FastAPI application factory with role-based route mounting."""

import os
from typing import Literal

from fastapi import FastAPI, Request, Response

from floxbee.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)

from .routers import public, worker
from .routes import internal_rules, internal_tickets, tasks_automations, tasks_tickets

AppRole = Literal["public", "worker"]


def create_app(role: AppRole | None = None) -> FastAPI:
    """Create the app for a role.

    The public role only exposes health. The worker role adds automation
    sweeps, ticket notifications and the internal ticket/rule endpoints,
    all behind task auth.

    Args:
        role: Explicit role override. If None, reads APP_ROLE
              (default "public").
    """
    if role is None:
        role = os.environ.get("APP_ROLE", "public")  # type: ignore[assignment]

    app = FastAPI(
        title="FloxBee Engine",
        docs_url=None,
        redoc_url=None,
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    app.include_router(public.router)

    if role == "worker":
        app.include_router(worker.router)
        app.include_router(tasks_automations.router)
        app.include_router(tasks_tickets.router)
        app.include_router(internal_tickets.router)
        app.include_router(internal_rules.router)

    return app
