"""Main FastAPI application."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import asyncio
import logging

from codehost_sync.core.config import get_settings
from codehost_sync.core.database import database
from codehost_sync.core.http import http_client_manager
from codehost_sync.api import health, integrations, webhooks
from codehost_sync.api.dependencies import create_token_manager, event_bus
from codehost_sync.utils.logging import setup_logging

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)

# Get settings
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting up codehost sync service...")
    logger.info(f"Service: {settings.service_name}")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Port: {settings.port}")
    await database.connect()
    http_client_manager.start()

    refresh_task = None
    if settings.token_refresh_interval > 0:
        refresh_task = asyncio.create_task(
            create_token_manager().refresh_tokens_periodically(settings.token_refresh_interval)
        )

    yield

    # Shutdown
    logger.info("Shutting down codehost sync service...")
    if refresh_task:
        refresh_task.cancel()
        try:
            await refresh_task
        except asyncio.CancelledError:
            pass
    await event_bus.drain()
    await http_client_manager.close()
    await database.disconnect()


# Create FastAPI app
app = FastAPI(
    title="Codehost Sync Service",
    description="GitHub synchronization, webhooks and issue linking",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(
    integrations.router,
    prefix="/api/v1/integrations",
    tags=["integrations"]
)
app.include_router(
    webhooks.router,
    prefix="/api/v1/webhooks",
    tags=["webhooks"]
)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "codehost_sync.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
    )
