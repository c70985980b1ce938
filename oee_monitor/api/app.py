"""FastAPI application for the webhook delivery engine."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import FastAPI

from oee_monitor import __version__
from oee_monitor.api.webhooks import router as webhooks_router
from oee_monitor.config import settings
from oee_monitor.logging_setup import setup_logging
from oee_monitor.webhooks.dispatcher import get_webhook_dispatcher
from oee_monitor.webhooks.trigger import get_webhook_trigger

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:  # noqa: ARG001
    """Drain background work on shutdown."""
    logger.info("app_starting", environment=settings.ENVIRONMENT)
    yield
    await get_webhook_trigger().shutdown()
    await get_webhook_dispatcher().shutdown()
    logger.info("app_stopped")


def create_app(title: str = "OEE Monitor Webhooks") -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        title: API title.

    Returns:
        Configured FastAPI application.
    """
    setup_logging()

    app = FastAPI(title=title, version=__version__, lifespan=lifespan)

    app.include_router(webhooks_router)

    @app.get("/health", tags=["Health"])
    async def health() -> dict[str, Any]:
        """Liveness check with delivery queue state."""
        return {
            "status": "ok",
            "timestamp": datetime.now(UTC).isoformat(),
            "webhooks": get_webhook_dispatcher().queue_stats().model_dump(),
        }

    return app
