"""
Schemas for service tokens, client tokens and team identities.
"""

from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr

# Longest service token lifetime accepted from the identity provider
MAX_TOKEN_LIFETIME_SECONDS = 365 * 24 * 60 * 60


class ServiceCredentials(BaseModel):
    """OAuth2 client credentials of this game server. Replaced wholesale, never mutated."""

    model_config = ConfigDict(frozen=True)

    client_id: str = Field(..., min_length=1, description="OAuth2 client ID")
    client_secret: SecretStr = Field(..., description="OAuth2 client secret")
    audience: str = Field("gamestate-api", description="Requested token audience")


class TokenResponse(BaseModel):
    """Identity provider response to a client-credentials grant."""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(..., min_length=1, repr=False)
    expires_in: int = Field(
        ..., gt=0, le=MAX_TOKEN_LIFETIME_SECONDS, description="Token lifetime in seconds"
    )
    token_type: Optional[str] = Field("Bearer")
    scope: Optional[str] = Field(None)


class ServiceToken(BaseModel):
    """The bearer token identifying this game server to Gamebrain."""

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(..., repr=False)
    expires_in: int
    issued_at: datetime
    token_type: Optional[str] = "Bearer"
    scope: Optional[str] = None

    @classmethod
    def from_response(cls, response: TokenResponse, issued_at: datetime) -> "ServiceToken":
        return cls(
            access_token=response.access_token,
            expires_in=response.expires_in,
            issued_at=issued_at,
            token_type=response.token_type,
            scope=response.scope,
        )

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + timedelta(seconds=self.expires_in)

    def refresh_due_at(self, refresh_multiplier: float) -> datetime:
        return self.issued_at + timedelta(seconds=self.expires_in * refresh_multiplier)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def seconds_remaining(self, now: datetime) -> float:
        return max(0.0, (self.expires_at - now).total_seconds())


class UserProfile(BaseModel):
    """Profile claims forwarded alongside a player's token."""

    model_config = ConfigDict(extra="ignore")

    sub: Optional[str] = None
    sid: Optional[str] = None
    s_hash: Optional[str] = None
    idp: Optional[str] = None
    amr: List[str] = Field(default_factory=list)
    auth_time: Optional[int] = None
    name: Optional[str] = None
    username: Optional[str] = None
    updated_at: Optional[str] = None
    picture: Optional[str] = None


class ClientToken(BaseModel):
    """
    A player's token envelope as forwarded by the game client.
    Only ``access_token`` is sent on to Gamebrain; the envelope is never stored.
    """

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(..., min_length=1, repr=False)
    profile: Optional[UserProfile] = None
    expires_at: Optional[int] = Field(None, description="Expiry as epoch seconds")
    id_token: Optional[str] = None
    session_state: Optional[str] = None
    token_type: Optional[str] = None
    scope: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now.timestamp()


class TeamIdentity(BaseModel):
    """Team identifier assigned by Gamebrain to the player's team."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    team_id: str = Field(..., min_length=1, alias="teamID")


class TeamResolutionRequest(BaseModel):
    """Body POSTed to Gamebrain's team endpoint."""

    user_token: str
    server_container_hostname: str
