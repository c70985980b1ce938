"""FastAPI routes for monitoring the webhook delivery engine."""

from oee_monitor.api.app import create_app
from oee_monitor.api.webhooks import router as webhooks_router

__all__ = [
    "create_app",
    "webhooks_router",
]
