"""
Pydantic schemas for the Session Broker Service.
"""

from session_broker_service.schemas.common import (
    ComponentHealth,
    ErrorResponse,
    HealthCheckResponse,
    HealthStatus,
)
from session_broker_service.schemas.session_schemas import (
    ServiceTokenStatus,
    TeamResolutionBody,
)
from session_broker_service.schemas.token_schemas import (
    ClientToken,
    ServiceCredentials,
    ServiceToken,
    TeamIdentity,
    TeamResolutionRequest,
    TokenResponse,
    UserProfile,
)

__all__ = [
    "ClientToken",
    "ComponentHealth",
    "ErrorResponse",
    "HealthCheckResponse",
    "HealthStatus",
    "ServiceCredentials",
    "ServiceToken",
    "ServiceTokenStatus",
    "TeamIdentity",
    "TeamResolutionBody",
    "TeamResolutionRequest",
    "TokenResponse",
    "UserProfile",
]
