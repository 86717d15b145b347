"""FastAPI application entry point for the Guest Payment service."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI
from sqlalchemy.orm import sessionmaker
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from guest_payment.api.dependencies import build_codec
from guest_payment.api.middleware import GuestPaymentMiddleware
from guest_payment.api.routes import router
from guest_payment.config import Settings, settings as default_settings
from guest_payment.logging_config import configure_logging

# Configure logging at module level
configure_logging(default_settings.log_level, default_settings.log_json)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Log startup and shutdown; report a disabled codec loudly."""
    logger.info("starting_guest_payment", environment=app.state.settings.environment)
    if app.state.codec is None:
        logger.error("guest_payment_disabled", reason="encryption key or method not configured")
    yield
    logger.info("guest_payment_shutdown_complete")


def create_app(settings: Settings | None = None, session_factory: sessionmaker | None = None) -> FastAPI:
    """Build the application.

    Args:
        settings: Settings to use; defaults to the environment-loaded settings
        session_factory: SQLAlchemy session factory; defaults to the engine from settings
    """
    settings = settings or default_settings

    app = FastAPI(
        title="Guest Payment Service",
        description="Guest payment links and operator pay-for-customer sessions",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.codec = build_codec(settings)

    app.add_middleware(GuestPaymentMiddleware)
    if settings.trusted_proxies:
        # Added last so it runs first and the guest payment layer sees the real client
        app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=settings.trusted_proxies)
    app.include_router(router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy" if app.state.codec is not None else "degraded",
            "service": "guest-payment",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "guest_payment.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=default_settings.debug,
        log_level="debug" if default_settings.debug else "info",
    )
