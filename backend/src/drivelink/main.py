"""
Main FastAPI application for DriveLink.

This module creates and configures the FastAPI application that serves the
Google Drive plugin endpoints: Drive push notifications, slash commands,
comment replies and the Google connect flow.
"""

import asyncio
import logging
import signal
import traceback
import uuid
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from .api import command_router, health_router, oauth_router, reply_router, webhook_router
from .core.cache_backend import close_cache_backend, get_cache_backend
from .core.config import get_settings_instance, reload_settings
from .core.context import DriveLinkContext
from .core.exceptions import DriveLinkException
from .core.http_client import close_http_client, get_http_client
from .core.logging import get_logger, setup_logging
from .core.middleware import RequestIDMiddleware, TimingMiddleware
from .core.response import DriveLinkResponse
from .services.channel_refresh_scheduler import start_watch_refresh_scheduler

settings = get_settings_instance()
logger = get_logger(__name__)


def generate_error_id() -> str:
    return f"ERR-{uuid.uuid4().hex[:8].upper()}"


def get_request_context(request: Request) -> dict[str, Any]:
    """Request fields attached to error logs.

    Query strings are not logged whole: the OAuth redirect carries the
    authorization code.
    """
    return {
        "method": request.method,
        "path": request.url.path,
        "request_id": getattr(request.state, "request_id", None),
        "user_id": getattr(request.state, "user_id", None) or request.query_params.get("userID"),
    }


def reload_configuration(app: FastAPI) -> None:
    """Re-read settings and apply them to the running components."""
    context: DriveLinkContext | None = getattr(app.state, "context", None)
    if context is None:
        return
    try:
        reload_settings(apply=context.apply_settings)
    except PydanticValidationError as e:
        logger.error("Configuration reload rejected", extra={"error": str(e)})
    except DriveLinkException as e:
        logger.error("Configuration reload rejected", extra={"error": e.message})


def _install_reload_handler(app: FastAPI) -> bool:
    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGHUP, reload_configuration, app)
    except (AttributeError, NotImplementedError, RuntimeError, ValueError) as e:
        # No SIGHUP on this platform, or not running in the main thread
        logger.debug(f"Configuration reload on SIGHUP unavailable: {e}")
        return False
    return True


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    setup_logging()

    current = get_settings_instance()
    logger.info("Starting DriveLink...")
    logger.info(f"Version: {current.version}")
    logger.info(f"Environment: {current.environment}")

    backend = await get_cache_backend()
    context = DriveLinkContext.build(current, backend, get_http_client)
    app.state.context = context
    reload_installed = _install_reload_handler(app)

    try:
        app.state.watch_refresh_task = await start_watch_refresh_scheduler(context.watch_manager, current)
        logger.info("Watch channel refresh scheduler started")
    except Exception as e:
        logger.warning(f"Failed to start watch channel refresh scheduler: {e}")

    logger.info("DriveLink startup complete")

    yield

    task = getattr(app.state, "watch_refresh_task", None)
    if task and not task.done():
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.debug("Background task 'watch_refresh' cancelled successfully")
        except Exception as e:
            logger.warning(f"Error while cancelling background task 'watch_refresh': {e}")

    logger.info("Shutting down DriveLink...")

    if reload_installed:
        asyncio.get_running_loop().remove_signal_handler(signal.SIGHUP)

    await context.oauth.shutdown()

    try:
        await close_http_client()
        logger.info("HTTP client connections closed")
    except Exception as e:
        logger.error(f"Error closing HTTP client connections: {e}")

    try:
        await close_cache_backend()
        logger.info("Key-value store connections closed")
    except Exception as e:
        logger.error(f"Error closing key-value store: {e}")

    logger.info("DriveLink shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="Google Drive integration for Mattermost",
        version=settings.version,
        debug=settings.debug,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app)
    setup_exception_handlers(app)
    setup_routes(app)

    logger.info("DriveLink FastAPI application created successfully")
    return app


def setup_middleware(app: FastAPI) -> None:
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(TimingMiddleware)


def setup_exception_handlers(app: FastAPI) -> None:
    """Convert DriveLink exceptions and unexpected errors into the error envelope."""

    @app.exception_handler(DriveLinkException)
    async def drivelink_exception_handler(request: Request, exc: DriveLinkException) -> JSONResponse:
        server_side = exc.status_code >= 500
        error_id = generate_error_id() if server_side else None
        logger.log(
            logging.ERROR if server_side else logging.WARNING,
            f"{exc.error_code}: {exc.message}",
            extra={
                "error_id": error_id,
                "status_code": exc.status_code,
                "details": exc.details,
                "request_context": get_request_context(request),
            },
        )
        return DriveLinkResponse.error(
            exc.message,
            code=exc.error_code,
            details=exc.details,
            status_code=exc.status_code,
            error_id=error_id,
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        error_id = generate_error_id()
        extra: dict[str, Any] = {
            "error_id": error_id,
            "exception_type": type(exc).__name__,
            "exception_message": str(exc),
            "request_context": get_request_context(request),
        }
        include_traceback = settings.debug or settings.environment == "development"
        if include_traceback:
            extra["traceback"] = traceback.format_exc()
        logger.error("Unhandled exception", extra=extra)

        return DriveLinkResponse.error(
            "An unexpected error occurred",
            code="INTERNAL_SERVER_ERROR",
            status_code=500,
            error_id=error_id,
        )


def setup_routes(app: FastAPI) -> None:
    app.include_router(health_router)
    app.include_router(oauth_router)
    app.include_router(webhook_router, prefix=settings.api_v1_prefix)
    app.include_router(reply_router, prefix=settings.api_v1_prefix)
    app.include_router(command_router, prefix=settings.api_v1_prefix)


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "drivelink.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_config=None,
    )
