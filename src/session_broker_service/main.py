"""
Main application entry point for the Session Broker Service.
"""

import sys
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from session_broker_service import __version__
from session_broker_service.broker import CredentialBroker
from session_broker_service.config import Settings, build_settings, settings
from session_broker_service.exceptions import (
    AuthorityRejectedError,
    BrokerClosedError,
    ClientTokenRejectedError,
    ConnectionClosedError,
    CredentialBrokerError,
    MalformedResponseError,
    ServiceTokenUnavailableError,
    TransportFailureError,
)
from session_broker_service.logging_config import LoggingMiddleware, logger, setup_logging
from session_broker_service.rate_limiting import limiter
from session_broker_service.routers.health_router import router as health_router
from session_broker_service.routers.session_router import router as session_router

BrokerFactory = Callable[[Settings], CredentialBroker]

# Most specific first; the first matching class decides the status code
ERROR_STATUS_CODES = [
    (ServiceTokenUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (TransportFailureError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ClientTokenRejectedError, status.HTTP_401_UNAUTHORIZED),
    (AuthorityRejectedError, status.HTTP_502_BAD_GATEWAY),
    (MalformedResponseError, status.HTTP_502_BAD_GATEWAY),
    (ConnectionClosedError, status.HTTP_409_CONFLICT),
    (BrokerClosedError, status.HTTP_409_CONFLICT),
]


def status_code_for(exc: CredentialBrokerError) -> int:
    for error_class, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_class):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_app(
    app_settings: Settings = settings,
    broker_factory: Optional[BrokerFactory] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        app_settings: Settings used for the app and the broker
        broker_factory: Builds the broker at startup, defaults to ``CredentialBroker.from_settings``
    """
    factory = broker_factory or CredentialBroker.from_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Start the credential broker before serving and stop it on shutdown.
        A broker that cannot obtain its first service token aborts startup.
        """
        logger.info("Application startup sequence initiated.")
        broker = factory(app_settings)
        try:
            await broker.start()
        except CredentialBrokerError as e:
            logger.error(
                f"Failed to start credential broker: {e.__class__.__name__}: {e.message}"
            )
            await broker.stop()
            raise

        app.state.broker = broker
        app.state.startup_time = time.time()
        logger.info("Application startup complete.")

        yield

        logger.info("Application shutdown sequence initiated.")
        await broker.stop()
        app.state.broker = None
        logger.info("Application shutdown complete.")

    app = FastAPI(
        title="Session Broker Service",
        description=(
            "Keeps the game server's service token refreshed and exchanges "
            "connecting players' tokens for their team IDs."
        ),
        version=__version__,
        root_path=app_settings.ROOT_PATH,
        lifespan=lifespan,
    )
    app.state.settings = app_settings

    app.add_middleware(LoggingMiddleware)
    # Added after LoggingMiddleware so the request ID is set before it logs
    setup_logging(app, app_settings)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.include_router(health_router)
    app.include_router(session_router)

    @app.exception_handler(CredentialBrokerError)
    async def broker_exception_handler(request: Request, exc: CredentialBrokerError):
        """Map broker errors to responses the game server can act on."""
        status_code = status_code_for(exc)
        if isinstance(exc, (AuthorityRejectedError, ServiceTokenUnavailableError)):
            logger.error(f"{request.url.path}: {exc.error_type}: {exc.message}")
        else:
            logger.warning(f"{request.url.path}: {exc.error_type}: {exc.message}")
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.message, "error_type": exc.error_type},
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Custom HTTP exception handler for consistent error responses."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "error_type": "HTTPException"},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Validation exception handler for consistent error responses."""
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc), "error_type": "ValidationError"},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Global exception handler for consistent error responses."""
        logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "Internal server error",
                "error_type": str(type(exc).__name__),
            },
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    launch_settings = build_settings(sys.argv[1:])
    uvicorn.run(
        create_app(launch_settings),
        host="0.0.0.0",
        port=8000,
        log_level=launch_settings.LOGGING_LEVEL.lower(),
    )
