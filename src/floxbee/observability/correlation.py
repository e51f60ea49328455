"""Correlation and tenant context for tracing sweeps and requests."""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
tenant_id_var: ContextVar[str] = ContextVar("tenant_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id() -> str:
    return correlation_id_var.get()


def set_correlation_id(cid: str) -> Token[str]:
    return correlation_id_var.set(cid)


def reset_correlation_id(token: Token[str]) -> None:
    correlation_id_var.reset(token)


def get_tenant_id() -> str:
    """Tenant currently being processed (empty outside a tenant scope)."""
    return tenant_id_var.get()


@contextmanager
def tenant_scope(tenant_id: str) -> Iterator[None]:
    """Tag every log line emitted inside the block with the tenant id.

    Only used for log enrichment. Engine code always receives the tenant
    explicitly and never reads it back from here.
    """
    token = tenant_id_var.set(tenant_id)
    try:
        yield
    finally:
        tenant_id_var.reset(token)


@contextmanager
def correlation_scope(cid: str | None = None) -> Iterator[str]:
    """Run a block under a correlation id, generating one if missing."""
    cid = cid or get_correlation_id() or generate_correlation_id()
    token = set_correlation_id(cid)
    try:
        yield cid
    finally:
        reset_correlation_id(token)
