"""
Configuration module for the Session Broker Service.
"""

import argparse
import logging
import socket
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Environment(str, Enum):
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """
    Settings for the Session Broker Service.
    Loads environment variables, with fallbacks to default values where appropriate.
    All environment variables are prefixed with SESSION_BROKER_SERVICE_.
    """

    # Core service settings
    ENVIRONMENT: Environment = Field(
        Environment.DEVELOPMENT,
        alias="SESSION_BROKER_SERVICE_ENVIRONMENT",
        description="Application environment",
    )
    ROOT_PATH: str = Field(
        "",
        alias="SESSION_BROKER_SERVICE_ROOT_PATH",
        description="API root path for reverse proxies",
    )
    LOGGING_LEVEL: str = Field(
        "INFO",
        alias="SESSION_BROKER_SERVICE_LOGGING_LEVEL",
        description="Logging level",
    )
    DEV_MODE: bool = Field(False, alias="SESSION_BROKER_SERVICE_DEV_MODE")
    DEBUG_MODE: bool = Field(False, alias="SESSION_BROKER_SERVICE_DEBUG_MODE")

    # Identity provider and Gamebrain connection
    IDENTITY_URI: str = Field(
        "http://identity:5000",
        alias="SESSION_BROKER_SERVICE_IDENTITY_URI",
        description="Base URI of the identity provider issuing service tokens",
    )
    GAMEBRAIN_URI: str = Field(
        "http://gamebrain:8000",
        alias="SESSION_BROKER_SERVICE_GAMEBRAIN_URI",
        description="Base URI of the Gamebrain backend resolving team IDs",
    )
    TOKEN_ENDPOINT_PATH: str = Field(
        "/connect/token", alias="SESSION_BROKER_SERVICE_TOKEN_ENDPOINT_PATH"
    )
    TEAM_ENDPOINT_PATH: str = Field(
        "/privileged/get_team", alias="SESSION_BROKER_SERVICE_TEAM_ENDPOINT_PATH"
    )

    # OAuth2 client credentials of this game server
    CLIENT_ID: str = Field(
        "game-server",
        alias="SESSION_BROKER_SERVICE_CLIENT_ID",
        description="Client ID used for the client-credentials grant",
    )
    CLIENT_SECRET: str = Field(
        "",
        alias="SESSION_BROKER_SERVICE_CLIENT_SECRET",
        description="Client secret used for the client-credentials grant",
    )
    AUDIENCE: str = Field(
        "gamestate-api",
        alias="SESSION_BROKER_SERVICE_AUDIENCE",
        description="Audience requested for the service token",
    )

    # Token refresh and retry policy
    TOKEN_REFRESH_MULTIPLIER: float = Field(
        0.9,
        alias="SESSION_BROKER_SERVICE_TOKEN_REFRESH_MULTIPLIER",
        description="Fraction of the token lifetime after which it is refreshed",
    )
    HTTP_TIMEOUT_SECONDS: float = Field(
        10.0, alias="SESSION_BROKER_SERVICE_HTTP_TIMEOUT_SECONDS"
    )
    RETRY_MAX_ATTEMPTS: int = Field(
        4, ge=1, alias="SESSION_BROKER_SERVICE_RETRY_MAX_ATTEMPTS"
    )
    RETRY_BASE_DELAY_SECONDS: float = Field(
        1.0, ge=0, alias="SESSION_BROKER_SERVICE_RETRY_BASE_DELAY_SECONDS"
    )
    RETRY_MAX_DELAY_SECONDS: float = Field(
        30.0, ge=0, alias="SESSION_BROKER_SERVICE_RETRY_MAX_DELAY_SECONDS"
    )
    REFRESH_FAILURE_COOLDOWN_SECONDS: float = Field(
        30.0,
        gt=0,
        alias="SESSION_BROKER_SERVICE_REFRESH_FAILURE_COOLDOWN_SECONDS",
        description="Pause between refresh cycles that exhausted their retries",
    )

    # Team resolution
    REUSE_CACHED_TEAM: bool = Field(
        True,
        alias="SESSION_BROKER_SERVICE_REUSE_CACHED_TEAM",
        description="Return an already resolved team instead of asking Gamebrain again",
    )
    SERVER_CONTAINER_HOSTNAME: Optional[str] = Field(
        None,
        alias="SESSION_BROKER_SERVICE_SERVER_CONTAINER_HOSTNAME",
        description="Hostname reported to Gamebrain; defaults to the machine hostname",
    )

    # Rate limiting
    RATE_LIMIT_TEAM_RESOLUTION: str = Field(
        "30/minute", alias="SESSION_BROKER_SERVICE_RATE_LIMIT_TEAM_RESOLUTION"
    )

    # CORS settings
    CORS_ALLOW_ORIGINS: List[str] = Field(
        default_factory=lambda: ["*"],
        alias="SESSION_BROKER_SERVICE_CORS_ALLOW_ORIGINS",
        description="List of origins that are allowed to make cross-origin requests",
    )

    @field_validator("IDENTITY_URI", "GAMEBRAIN_URI")
    def trim_trailing_slash(cls, v: str, info: Any) -> str:
        return v.rstrip("/")

    @field_validator("TOKEN_REFRESH_MULTIPLIER")
    def validate_refresh_multiplier(cls, v: float, info: Any) -> float:
        if not 0 < v < 1:
            raise ValueError("TOKEN_REFRESH_MULTIPLIER must be strictly between 0 and 1")
        return v

    @property
    def token_endpoint(self) -> str:
        return f"{self.IDENTITY_URI}{self.TOKEN_ENDPOINT_PATH}"

    @property
    def team_endpoint(self) -> str:
        return f"{self.GAMEBRAIN_URI}{self.TEAM_ENDPOINT_PATH}"

    @property
    def host_identifier(self) -> str:
        return self.SERVER_CONTAINER_HOSTNAME or socket.gethostname()

    def is_production(self) -> bool:
        return self.ENVIRONMENT == Environment.PRODUCTION

    def is_development(self) -> bool:
        return self.ENVIRONMENT == Environment.DEVELOPMENT

    def is_testing(self) -> bool:
        return self.ENVIRONMENT == Environment.TESTING

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )


# Launch flags passed to the game server process, mapped onto settings fields
_FLAG_TO_FIELD = {
    "gamebrainURI": "GAMEBRAIN_URI",
    "identityURI": "IDENTITY_URI",
    "clientID": "CLIENT_ID",
    "clientSecret": "CLIENT_SECRET",
}


def parse_command_line_args(argv: Sequence[str]) -> Dict[str, Any]:
    """
    Parse game server launch flags into settings overrides.

    Flags use a single dash (``-gamebrainURI http://...``). Flags given with an
    empty value are ignored, unknown flags are skipped.

    Args:
        argv: Arguments without the program name

    Returns:
        Dict[str, Any]: Settings field names mapped to the provided values
    """
    parser = argparse.ArgumentParser(add_help=False, allow_abbrev=False)
    for flag in _FLAG_TO_FIELD:
        parser.add_argument(f"-{flag}", dest=flag, default=None)
    parser.add_argument("-dev", dest="dev", action="store_true")
    parser.add_argument("-debug", dest="debug", action="store_true")

    known, unknown = parser.parse_known_args(list(argv))
    if unknown:
        logger.debug(f"Ignoring unrecognised launch arguments: {unknown}")

    overrides: Dict[str, Any] = {}
    for flag, field_name in _FLAG_TO_FIELD.items():
        value = getattr(known, flag)
        if value:
            overrides[field_name] = value
    if known.dev:
        overrides["DEV_MODE"] = True
    if known.debug:
        overrides["DEBUG_MODE"] = True
        overrides["LOGGING_LEVEL"] = "DEBUG"
    return overrides


def build_settings(argv: Optional[Sequence[str]] = None) -> Settings:
    """Build settings from the environment, overlaid with launch flags."""
    overrides = parse_command_line_args(argv) if argv else {}
    built = Settings(**overrides)
    if not built.CLIENT_SECRET:
        logger.warning(
            "CLIENT_SECRET is not set. The identity provider will reject "
            "client-credentials requests until it is configured."
        )
    return built


# Create a global instance of the settings
settings = Settings()
