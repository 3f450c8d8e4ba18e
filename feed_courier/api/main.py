"""FastAPI application serving the self-hostable relay endpoints."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ..exceptions import FeedCourierError
from ..utils.config import get_service_configuration, get_settings
from ..utils.logging import setup_logger

logger = setup_logger(__name__, context={"component": "relay_api"})


@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore
    """Application lifespan context manager for startup/shutdown."""
    # Startup
    settings = get_settings()
    get_service_configuration(settings)
    logger.info(
        "Relay API starting up (upstream host %s)...",
        settings.relay_upstream_host,
    )
    if not settings.lookup_database_url:
        logger.warning("No lookup database configured; uploads will return 501")
    yield
    # Shutdown
    logger.info("Relay API shutting down...")


app = FastAPI(
    title="Feed Courier Relay",
    description="Forwarding relay for the feed API and media id lookup service",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(FeedCourierError)
async def feed_courier_exception_handler(request: Request, exc: FeedCourierError) -> JSONResponse:
    """Handle custom Feed Courier exceptions."""
    logger.error(
        "FeedCourierError: %s",
        exc,
        extra={"status": "error"},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": str(exc), "error_type": exc.__class__.__name__},
    )


# Import routers
from .routes import health, lookup, metrics, relay  # noqa: E402

app.include_router(health.router, tags=["health"])
app.include_router(lookup.router, tags=["lookup"])
app.include_router(metrics.router, tags=["monitoring"])
app.include_router(relay.router, tags=["relay"])
