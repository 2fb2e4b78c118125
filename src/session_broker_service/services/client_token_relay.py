"""
Client Token Relay: exchanges a connecting player's token, together with the
current service token, for the team identifier Gamebrain assigns to them.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from pydantic import ValidationError

from session_broker_service.clients.transport import Transport, TransportError
from session_broker_service.exceptions import (
    AuthorityRejectedError,
    BrokerClosedError,
    ClientTokenRejectedError,
    ConnectionClosedError,
    MalformedResponseError,
    ServiceTokenUnavailableError,
    TransportFailureError,
)
from session_broker_service.schemas.token_schemas import (
    ClientToken,
    ServiceToken,
    TeamIdentity,
    TeamResolutionRequest,
)
from session_broker_service.services.service_token_manager import (
    Clock,
    ServiceTokenManager,
    utcnow,
)
from session_broker_service.services.team_identity_cache import TeamIdentityCache
from session_broker_service.utils.keyed_lock import KeyedLock
from session_broker_service.utils.retry import RetryConfig, SleepFunc, retry_async

logger = logging.getLogger(__name__)

# Gamebrain answers these when the player's token is bad rather than ours
CLIENT_REJECTION_STATUS_CODES = frozenset({400, 404, 422})


def mask_token(token: str) -> str:
    return "*****" + token[-6:] if token else "None"


@dataclass
class _Resolution:
    client_access_token: str
    task: "asyncio.Task[TeamIdentity]"


class ClientTokenRelay:
    """
    Resolves team identities per connection.

    Concurrent calls for one connection with the same token share a single
    backend request; calls with different tokens for one connection run one
    after another. Distinct connections never wait on each other.
    """

    def __init__(
        self,
        token_manager: ServiceTokenManager,
        transport: Transport,
        cache: TeamIdentityCache,
        team_endpoint: str,
        host_identifier: str,
        reuse_cached_team: bool = True,
        retry_config: Optional[RetryConfig] = None,
        clock: Clock = utcnow,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self._token_manager = token_manager
        self._transport = transport
        self._cache = cache
        self._team_endpoint = team_endpoint
        self.host_identifier = host_identifier
        self.reuse_cached_team = reuse_cached_team
        self.retry_config = retry_config or RetryConfig()
        self._clock = clock
        self._sleep = sleep

        self._inflight: Dict[str, List[_Resolution]] = {}
        self._connection_locks = KeyedLock()
        self._closed = False

    @property
    def team_endpoint(self) -> str:
        return self._team_endpoint

    @property
    def closed(self) -> bool:
        return self._closed

    def configure(self, team_endpoint: str) -> None:
        self._team_endpoint = team_endpoint
        logger.info(f"Team resolution endpoint set to {team_endpoint}")

    def inflight_count(self, connection_id: Optional[str] = None) -> int:
        if connection_id is not None:
            return len(self._inflight.get(connection_id, []))
        return sum(len(resolutions) for resolutions in self._inflight.values())

    async def resolve_team(
        self,
        connection_id: str,
        client_token: Union[ClientToken, str],
        host_identifier: Optional[str] = None,
    ) -> TeamIdentity:
        """
        Resolve and cache the team of the player on ``connection_id``.

        Args:
            connection_id: The connection the player joined on
            client_token: The forwarded token envelope, its JSON, or a bare access token
            host_identifier: Hostname reported to Gamebrain, defaults to this server's

        Returns:
            TeamIdentity: The team stored for the connection

        Raises:
            ServiceTokenUnavailableError: No unexpired service token is held
            ClientTokenRejectedError: The player's token is expired or was rejected
            AuthorityRejectedError: Gamebrain rejected the service token
            TransportFailureError: Gamebrain could not be reached
            MalformedResponseError: Gamebrain's answer was not a team identity
            ConnectionClosedError: The connection closed before resolution finished
            BrokerClosedError: The broker is shutting down
        """
        if self._closed:
            raise BrokerClosedError("Broker is shutting down")

        access_token = self._client_access_token(client_token)
        # Fail fast: nothing is sent without a usable service token
        self._usable_service_token()

        for resolution in self._inflight.get(connection_id, []):
            if resolution.client_access_token == access_token and not resolution.task.done():
                logger.debug(f"Joining in-flight team resolution for connection {connection_id}")
                return await self._await_resolution(resolution.task)

        task = asyncio.create_task(
            self._resolve_serialised(
                connection_id, access_token, host_identifier or self.host_identifier
            ),
            name=f"resolve-team-{connection_id}",
        )
        self._inflight.setdefault(connection_id, []).append(_Resolution(access_token, task))
        task.add_done_callback(lambda t: self._forget(connection_id, t))
        return await self._await_resolution(task)

    async def _await_resolution(self, task: "asyncio.Task[TeamIdentity]") -> TeamIdentity:
        try:
            # Shielded so one caller going away does not cancel the shared resolution
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
            if self._closed:
                raise BrokerClosedError("Broker shut down during team resolution")
            raise ConnectionClosedError("Connection closed during team resolution")

    def _forget(self, connection_id: str, task: "asyncio.Task[TeamIdentity]") -> None:
        resolutions = self._inflight.get(connection_id, [])
        remaining = [r for r in resolutions if r.task is not task]
        if remaining:
            self._inflight[connection_id] = remaining
        else:
            self._inflight.pop(connection_id, None)
        if not task.cancelled():
            # Retrieve the exception so unawaited failures are not reported as lost
            task.exception()

    async def _resolve_serialised(
        self, connection_id: str, access_token: str, host_identifier: str
    ) -> TeamIdentity:
        async with self._connection_locks.acquire(connection_id):
            if self.reuse_cached_team:
                cached = self._cache.get(connection_id)
                if cached is not None:
                    logger.debug(f"Using cached team {cached.team_id} for connection {connection_id}")
                    return cached

            logger.info(
                f"Resolving team for connection {connection_id} "
                f"(client token {mask_token(access_token)})"
            )
            team = await retry_async(
                lambda: self._request_team(access_token, host_identifier),
                self.retry_config,
                sleep=self._sleep,
                description=f"Team resolution for connection {connection_id}",
            )

            if self._closed:
                logger.info(f"Discarding team for connection {connection_id}: broker is shutting down")
                raise BrokerClosedError("Broker shut down during team resolution")

            self._cache.set(connection_id, team)
            logger.info(f"Connection {connection_id} resolved to team {team.team_id}")
            return team

    def _client_access_token(self, client_token: Union[ClientToken, str]) -> str:
        if isinstance(client_token, str):
            raw = client_token.strip()
            if not raw:
                raise ClientTokenRejectedError("Client token is empty")
            if not raw.startswith("{"):
                return raw
            try:
                client_token = ClientToken.model_validate_json(raw)
            except ValidationError as e:
                raise ClientTokenRejectedError("Client token envelope could not be read") from e

        if client_token.is_expired(self._clock()):
            raise ClientTokenRejectedError("Client token has expired; the player must log in again")
        return client_token.access_token

    def _usable_service_token(self) -> ServiceToken:
        service_token = self._token_manager.current_token()
        if service_token.is_expired(self._clock()):
            raise ServiceTokenUnavailableError(
                f"Service token expired at {service_token.expires_at.isoformat()}"
            )
        return service_token

    async def _request_team(self, access_token: str, host_identifier: str) -> TeamIdentity:
        # Snapshot per attempt so retries pick up a refreshed service token
        service_token = self._usable_service_token()
        payload = TeamResolutionRequest(
            user_token=access_token, server_container_hostname=host_identifier
        )
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"Bearer {service_token.access_token}",
        }

        try:
            response = await self._transport.post(
                self._team_endpoint, headers, payload.model_dump_json()
            )
        except TransportError as e:
            raise TransportFailureError(f"Gamebrain unreachable: {str(e)}") from e

        status_code = response.status_code
        if status_code >= 500:
            raise TransportFailureError(
                f"Gamebrain returned HTTP {status_code}", status_code=status_code
            )
        if status_code in CLIENT_REJECTION_STATUS_CODES:
            raise ClientTokenRejectedError(
                f"Gamebrain rejected the client token (HTTP {status_code})",
                status_code=status_code,
            )
        if status_code >= 400:
            raise AuthorityRejectedError(
                f"Gamebrain rejected the service token (HTTP {status_code})",
                status_code=status_code,
            )
        if status_code != 200:
            raise MalformedResponseError(
                f"Unexpected HTTP {status_code} from Gamebrain", status_code=status_code
            )

        try:
            return TeamIdentity.model_validate_json(response.body)
        except ValidationError as e:
            raise MalformedResponseError(
                f"Invalid team response: {e.error_count()} validation error(s)"
            ) from e

    def connection_closed(self, connection_id: str) -> None:
        """Abandon in-flight resolutions for the connection and drop its team."""
        for resolution in self._inflight.get(connection_id, []):
            resolution.task.cancel()
        if self._cache.remove(connection_id) is not None:
            logger.info(f"Removed team for closed connection {connection_id}")

    async def close(self) -> None:
        """Stop accepting work and cancel everything in flight without writing to the cache."""
        self._closed = True
        tasks = [r.task for resolutions in self._inflight.values() for r in resolutions]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} in-flight team resolution(s)")
