"""
Health check endpoints for monitoring service status.
"""

import logging
import os
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request

from session_broker_service import __version__
from session_broker_service.broker import CredentialBroker
from session_broker_service.dependencies import get_broker
from session_broker_service.schemas.common import HealthCheckResponse, HealthStatus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

# Track app startup time for uptime monitoring
start_time = time.time()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(request: Request) -> HealthCheckResponse:
    """
    Basic liveness check. Does not contact the identity provider or Gamebrain.
    """
    return HealthCheckResponse(
        status=HealthStatus.OK,
        version=__version__,
        timestamp=datetime.now(timezone.utc),
        components={"api": {"status": HealthStatus.OK}},
        uptime_seconds=time.time() - start_time,
    )


@router.get("/health/detailed", response_model=HealthCheckResponse)
async def detailed_health_check(
    request: Request,
    broker: CredentialBroker = Depends(get_broker),
) -> HealthCheckResponse:
    """
    Detailed health check including the state of the service token.
    The token itself is never included.
    """
    response = await health_check(request)
    response_dict = response.model_dump()

    token_status = broker.token_status()
    if not token_status.acquired:
        response_dict["components"]["service_token"] = {
            "status": HealthStatus.ERROR,
            "message": f"No service token acquired ({token_status.last_error or 'pending'})",
        }
        response_dict["status"] = HealthStatus.ERROR
    elif not token_status.seconds_remaining:
        response_dict["components"]["service_token"] = {
            "status": HealthStatus.ERROR,
            "message": f"Service token expired at {token_status.expires_at.isoformat()}",
        }
        response_dict["status"] = HealthStatus.ERROR
    elif token_status.consecutive_failures:
        response_dict["components"]["service_token"] = {
            "status": HealthStatus.DEGRADED,
            "message": (
                f"{token_status.consecutive_failures} failed refresh attempt(s), "
                f"token valid for {token_status.seconds_remaining:.0f}s"
            ),
        }
        response_dict["status"] = HealthStatus.DEGRADED
    else:
        response_dict["components"]["service_token"] = {
            "status": HealthStatus.OK,
            "message": f"Next refresh at {token_status.next_refresh_at.isoformat()}",
        }

    response_dict["components"]["team_cache"] = {
        "status": HealthStatus.OK,
        "message": f"{len(broker.cache)} connection(s) with a resolved team",
    }
    response_dict["components"]["environment"] = {
        "status": HealthStatus.OK,
        "message": f"Environment: {request.app.state.settings.ENVIRONMENT.value}",
    }
    response_dict["components"]["process"] = {
        "status": HealthStatus.OK,
        "message": f"PID: {os.getpid()}",
    }

    return HealthCheckResponse(**response_dict)
