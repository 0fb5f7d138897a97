from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from salonref_api.core.settings import settings
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .services.clients import ServiceClients


APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    clients = ServiceClients.from_settings(settings)
    app.state.clients = clients
    logger.info(
        "Service clients ready",
        square_environment=settings.square_environment,
        wallet_passes=clients.pass_builder.is_configured,
        wallet_push=clients.push_backend is not None,
        email_enabled=not settings.disable_email_sending,
        sms_enabled=not settings.disable_sms_sending,
    )
    try:
        yield
    finally:
        await clients.aclose()


def create_app() -> FastAPI:
    """Application factory for the salon referral FastAPI service."""
    configure_logging(
        service_name="salonref-api",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Salon Referral API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="salonref-api",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
