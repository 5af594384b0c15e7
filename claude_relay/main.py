"""
Claude Relay Application Entry Point

FastAPI application main entry, including router registration and application configuration.
"""

import logging
import traceback
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from claude_relay.api.proxy import anthropic_router, openai_router
from claude_relay.common.errors import AppError
from claude_relay.config import Settings, get_settings
from claude_relay.logging_config import setup_logging
from claude_relay.services.log_service import FileLogSink, RequestLogShipper
from claude_relay.services.relay_service import RelayService

logger = logging.getLogger(__name__)


def build_relay_service(settings: Settings) -> RelayService:
    """
    Construct the relay service and its collaborators

    Args:
        settings: Relay configuration

    Returns:
        RelayService: Ready-to-use service
    """
    log_shipper: Optional[RequestLogShipper] = None
    if settings.REQUEST_LOG_ENABLED:
        log_shipper = RequestLogShipper(
            FileLogSink(settings.REQUEST_LOG_DIR),
            prefix=settings.REQUEST_LOG_PREFIX,
        )
        logger.info("Request logs enabled: dir=%s", settings.REQUEST_LOG_DIR)
    return RelayService(settings, log_shipper=log_shipper)


def create_app(relay_service: Optional[RelayService] = None) -> FastAPI:
    """
    Create the FastAPI application

    Args:
        relay_service: Prebuilt service; built from settings on startup when omitted

    Returns:
        FastAPI: Application instance
    """
    settings = get_settings()

    # Application Lifecycle Management
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.relay_service = relay_service or build_relay_service(settings)
        yield

    app = FastAPI(
        title=settings.APP_NAME,
        description="OpenAI compatible relay for Claude Code upstreams",
        version="0.1.0",
        lifespan=lifespan,
    )
    if relay_service is not None:
        app.state.relay_service = relay_service

    # Global Exception Handler
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        """
        Handle application custom exceptions

        In production mode, error details are hidden to prevent information leakage.
        """
        include_details = get_settings().DEBUG
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(include_details=include_details),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """
        Handle uncaught exceptions

        Stack traces are logged but only returned to clients in debug mode.
        """
        logger.error(
            "Uncaught exception: %s\nPath: %s\nTraceback:\n%s",
            str(exc),
            request.url.path,
            traceback.format_exc(),
        )

        if get_settings().DEBUG:
            return JSONResponse(
                status_code=500,
                content={
                    "error": {
                        "message": str(exc),
                        "type": type(exc).__name__,
                        "code": "internal_error",
                        "traceback": traceback.format_exc().split("\n"),
                    }
                },
            )

        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "message": "Internal server error",
                    "type": "internal_error",
                    "code": "internal_error",
                }
            },
        )

    # Health Check Endpoint
    @app.get("/health", tags=["Health"])
    async def health_check():
        """
        Health Check

        Used for service liveness probe.
        """
        return {"status": "healthy"}

    # Register Proxy Routers
    app.include_router(openai_router)
    app.include_router(anthropic_router)
    return app


# Initialize logging configuration
setup_logging()

app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "claude_relay.main:app",
        host="0.0.0.0",
        port=8000,
        reload=get_settings().DEBUG,
    )
