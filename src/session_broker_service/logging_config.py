import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

from session_broker_service.config import Environment, Settings, settings

# Configure logger
logger = logging.getLogger("session_broker_service")

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


# Request ID context for correlating log entries from the same request
class RequestContext:
    """Per-request storage for context such as the request ID"""

    @classmethod
    def get_request_id(cls) -> Optional[str]:
        return _request_id.get()

    @classmethod
    def set_request_id(cls, request_id: str) -> None:
        _request_id.set(request_id)

    @classmethod
    def clear_request_id(cls) -> None:
        _request_id.set(None)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Middleware to add request ID to each request"""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        RequestContext.set_request_id(request_id)
        try:
            response = await call_next(request)
        finally:
            RequestContext.clear_request_id()
        response.headers["X-Request-ID"] = request_id
        return response


class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging"""

    def __init__(self, environment: Environment = Environment.PRODUCTION):
        super().__init__()
        self.environment = environment

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "environment": str(self.environment.value),
        }
        if request_id := RequestContext.get_request_id():
            log_record["request_id"] = request_id
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        if hasattr(record, "extra") and record.extra:
            log_record.update(record.extra)
        return json.dumps(log_record, default=str)


def setup_logging(app: Optional[FastAPI] = None, app_settings: Settings = settings) -> None:
    """Configure logging for the application"""
    log_level = getattr(logging, app_settings.LOGGING_LEVEL.upper(), logging.INFO)

    root_logger = logging.getLogger()
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    if app_settings.ENVIRONMENT == Environment.PRODUCTION:
        formatter = JsonFormatter(app_settings.ENVIRONMENT)
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)
    root_logger.setLevel(log_level)

    logging.getLogger("session_broker_service").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    # httpx logs every request at INFO, including the token endpoint
    logging.getLogger("httpx").setLevel(logging.WARNING)

    if app is not None:
        app.add_middleware(RequestIdMiddleware)

    logger.info(
        f"Logging configured with level {app_settings.LOGGING_LEVEL} "
        f"and {'JSON' if app_settings.ENVIRONMENT == Environment.PRODUCTION else 'plain text'} format"
    )


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log request and response information"""

    async def dispatch(self, request: Request, call_next):
        if request.url.path in ["/health", "/health/detailed"]:
            return await call_next(request)

        start_time = time.time()
        request_id = RequestContext.get_request_id()

        try:
            response = await call_next(request)
            duration_ms = (time.time() - start_time) * 1000

            logger.info(
                "Request processed",
                extra={
                    "extra": {
                        "request": {
                            "method": request.method,
                            "path": request.url.path,
                            "client_host": request.client.host if request.client else None,
                            "request_id": request_id,
                        },
                        "response": {
                            "status_code": response.status_code,
                            "duration_ms": round(duration_ms, 2),
                        },
                    }
                },
            )
            return response
        except Exception as e:
            logger.error(
                f"Request failed: {e}", exc_info=True, extra={"extra": {"request_id": request_id}}
            )
            raise
