"""
Request and response schemas for the session endpoints.
"""

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, Field

from session_broker_service.schemas.token_schemas import ClientToken


class TeamResolutionBody(BaseModel):
    """A connecting player's token, forwarded by the game server."""

    client_token: Union[ClientToken, str] = Field(
        ...,
        description="The token envelope forwarded by the client, or a bare access token",
    )
    host_identifier: Optional[str] = Field(
        None, description="Overrides the container hostname reported to Gamebrain"
    )


class ServiceTokenStatus(BaseModel):
    """Non-secret view of the service token held by the broker."""

    acquired: bool
    issued_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    seconds_remaining: Optional[float] = None
    next_refresh_at: Optional[datetime] = None
    consecutive_failures: int = 0
    last_error: Optional[str] = None
