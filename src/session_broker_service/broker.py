"""
Credential broker: owns the service token manager, the client token relay,
the team cache and the transport they share, and runs their lifecycle.

One broker is built per process (see ``main.lifespan``) and handed to the code
that needs it; nothing here is a module-level singleton.
"""

import asyncio
import logging
from typing import Optional, Union

from session_broker_service.clients.transport import HttpxTransport, Transport
from session_broker_service.config import Settings
from session_broker_service.exceptions import ReconfigurationError
from session_broker_service.schemas.session_schemas import ServiceTokenStatus
from session_broker_service.schemas.token_schemas import (
    ClientToken,
    ServiceCredentials,
    ServiceToken,
    TeamIdentity,
)
from session_broker_service.services.client_token_relay import ClientTokenRelay
from session_broker_service.services.service_token_manager import (
    Clock,
    ServiceTokenManager,
    utcnow,
)
from session_broker_service.services.team_identity_cache import TeamIdentityCache
from session_broker_service.utils.retry import RetryConfig, SleepFunc

logger = logging.getLogger(__name__)


class CredentialBroker:
    def __init__(
        self,
        token_manager: ServiceTokenManager,
        relay: ClientTokenRelay,
        cache: TeamIdentityCache,
        transport: Transport,
        token_endpoint_path: str = "/connect/token",
        team_endpoint_path: str = "/privileged/get_team",
    ):
        self.token_manager = token_manager
        self.relay = relay
        self.cache = cache
        self._transport = transport
        self._token_endpoint_path = token_endpoint_path
        self._team_endpoint_path = team_endpoint_path
        self._started = False
        self._stopped = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[Transport] = None,
        clock: Clock = utcnow,
        sleep: SleepFunc = asyncio.sleep,
    ) -> "CredentialBroker":
        """Build a broker and its collaborators from settings."""
        transport = transport or HttpxTransport(timeout=settings.HTTP_TIMEOUT_SECONDS)
        retry_config = RetryConfig(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY_SECONDS,
            max_delay=settings.RETRY_MAX_DELAY_SECONDS,
        )
        credentials = ServiceCredentials(
            client_id=settings.CLIENT_ID,
            client_secret=settings.CLIENT_SECRET,
            audience=settings.AUDIENCE,
        )
        token_manager = ServiceTokenManager(
            transport=transport,
            credentials=credentials,
            token_endpoint=settings.token_endpoint,
            refresh_multiplier=settings.TOKEN_REFRESH_MULTIPLIER,
            retry_config=retry_config,
            failure_cooldown=settings.REFRESH_FAILURE_COOLDOWN_SECONDS,
            clock=clock,
            sleep=sleep,
        )
        cache = TeamIdentityCache()
        relay = ClientTokenRelay(
            token_manager=token_manager,
            transport=transport,
            cache=cache,
            team_endpoint=settings.team_endpoint,
            host_identifier=settings.host_identifier,
            reuse_cached_team=settings.REUSE_CACHED_TEAM,
            retry_config=retry_config,
            clock=clock,
            sleep=sleep,
        )
        logger.info(
            f"Credential broker configured: identity provider {settings.IDENTITY_URI}, "
            f"Gamebrain {settings.GAMEBRAIN_URI}, client '{settings.CLIENT_ID}'"
        )
        return cls(
            token_manager=token_manager,
            relay=relay,
            cache=cache,
            transport=transport,
            token_endpoint_path=settings.TOKEN_ENDPOINT_PATH,
            team_endpoint_path=settings.TEAM_ENDPOINT_PATH,
        )

    @property
    def started(self) -> bool:
        return self._started

    def reconfigure(
        self,
        credentials: Optional[ServiceCredentials] = None,
        identity_uri: Optional[str] = None,
        gamebrain_uri: Optional[str] = None,
    ) -> None:
        """
        Replace the service credentials and/or endpoint base URIs before first use.

        Raises:
            ReconfigurationError: If the broker has started or a token fetch was attempted
        """
        if self._started:
            raise ReconfigurationError("Broker cannot be reconfigured once started")
        token_endpoint = None
        if identity_uri is not None:
            token_endpoint = f"{identity_uri.rstrip('/')}{self._token_endpoint_path}"
        self.token_manager.configure(credentials=credentials, token_endpoint=token_endpoint)
        if gamebrain_uri is not None:
            self.relay.configure(f"{gamebrain_uri.rstrip('/')}{self._team_endpoint_path}")

    async def start(self) -> ServiceToken:
        """
        Acquire the first service token and start refreshing it.

        Raises:
            CredentialBrokerError: If no service token could be obtained at boot
        """
        if self._stopped:
            raise RuntimeError("A stopped broker cannot be restarted")
        self._started = True
        token = await self.token_manager.start()
        logger.info("Credential broker started")
        return token

    async def stop(self) -> None:
        """Abandon in-flight work, drop all teams and release the transport. Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        logger.info("Credential broker shutting down")
        try:
            await self.relay.close()
        finally:
            try:
                await self.token_manager.stop()
            finally:
                self.cache.clear()
                await self._transport.aclose()
        logger.info("Credential broker stopped")

    async def acquire_token(self) -> ServiceToken:
        token = await self.token_manager.acquire_token()
        if not self._started:
            logger.warning(
                "Service token acquired before the broker was started; "
                "it will not be refreshed until start() is called"
            )
        return token

    def current_token(self) -> ServiceToken:
        return self.token_manager.current_token()

    def token_status(self) -> ServiceTokenStatus:
        return self.token_manager.status()

    async def resolve_team(
        self,
        connection_id: str,
        client_token: Union[ClientToken, str],
        host_identifier: Optional[str] = None,
    ) -> TeamIdentity:
        return await self.relay.resolve_team(connection_id, client_token, host_identifier)

    def team_for(self, connection_id: str) -> Optional[TeamIdentity]:
        return self.cache.get(connection_id)

    def connection_closed(self, connection_id: str) -> None:
        self.relay.connection_closed(connection_id)
