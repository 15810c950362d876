from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from campaign_api.core.settings import settings
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .services.calendar import get_referral_hub, register_calendar_listeners


APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    hub = app.state.referral_hub
    logger.info(
        "Calendar campaign service started",
        feature_key=settings.calendar_feature_key,
        default_raffle_id=settings.calendar_default_raffle_id,
        referral_handlers=len(hub.handlers),
    )
    try:
        yield
    finally:
        logger.info("Calendar campaign service stopped")


def create_app() -> FastAPI:
    """Application factory for the calendar campaign service."""
    configure_logging(
        service_name="campaign-api",
        environment=settings.environment,
        version=APP_VERSION,
        level=settings.log_level,
        feature_key=settings.calendar_feature_key,
    )

    app = FastAPI(
        title="Campaign API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="campaign-api",
        service_version=APP_VERSION,
        environment=settings.environment,
        enabled=settings.tracing_enabled,
    )

    # Listeners must exist before the first request even when lifespan events are not run.
    hub = get_referral_hub()
    register_calendar_listeners(hub)
    app.state.referral_hub = hub

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
