"""ASGI entry point: ``uvicorn floxbee.api.app:app`` (role from APP_ROLE)."""

from floxbee.api.factory import create_app

app = create_app()
