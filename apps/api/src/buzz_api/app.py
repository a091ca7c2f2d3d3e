from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from buzz_api.core.settings import settings
from buzz_api.db.session import engine
from .api.envelope import register_exception_handlers
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing


APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Buzz API starting",
        environment=settings.environment,
        database=engine.url.render_as_string(hide_password=True),
        sms_gateway=bool(settings.sms_gateway_url),
    )
    try:
        yield
    finally:
        await engine.dispose()
        logger.info("Buzz API stopped")


def create_app() -> FastAPI:
    """Application factory for the Buzz ledger service."""
    configure_logging(
        service_name="buzz-api",
        environment=settings.environment,
        version=APP_VERSION,
        sql_echo=settings.database_echo,
    )

    app = FastAPI(
        title="Buzz Ledger API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    if settings.otel_enabled:
        configure_tracing(
            app,
            service_name="buzz-api",
            service_version=APP_VERSION,
            environment=settings.environment,
        )

    register_exception_handlers(app)
    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
