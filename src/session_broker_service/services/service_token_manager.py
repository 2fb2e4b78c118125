"""
Service Token Manager: acquires the game server's service token with a
client-credentials grant and keeps it refreshed for the life of the process.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Callable, Optional
from urllib.parse import urlencode

from pydantic import ValidationError

from session_broker_service.clients.transport import Transport, TransportError
from session_broker_service.exceptions import (
    AuthorityRejectedError,
    CredentialBrokerError,
    MalformedResponseError,
    ReconfigurationError,
    TokenNotYetAcquiredError,
    TransportFailureError,
)
from session_broker_service.schemas.session_schemas import ServiceTokenStatus
from session_broker_service.schemas.token_schemas import (
    ServiceCredentials,
    ServiceToken,
    TokenResponse,
)
from session_broker_service.utils.retry import RetryConfig, SleepFunc, retry_async

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _oauth_error_description(body: bytes) -> str:
    """Extract ``error``/``error_description`` from an OAuth2 error body, if any."""
    try:
        data = json.loads(body)
    except ValueError:
        return ""
    if not isinstance(data, dict):
        return ""
    parts = [str(data[key]) for key in ("error", "error_description") if data.get(key)]
    return ": ".join(parts)


class ServiceTokenManager:
    """
    Holds the current service token and refreshes it in a background task.

    The current token is an immutable ``ServiceToken`` swapped in a single
    assignment, so readers always see a whole token. The refresh task is the
    only writer besides explicit ``acquire_token`` calls.
    """

    def __init__(
        self,
        transport: Transport,
        credentials: ServiceCredentials,
        token_endpoint: str,
        refresh_multiplier: float = 0.9,
        retry_config: Optional[RetryConfig] = None,
        failure_cooldown: float = 30.0,
        clock: Clock = utcnow,
        sleep: SleepFunc = asyncio.sleep,
    ):
        """
        Initialize the Service Token Manager.

        Args:
            transport: Transport used to reach the identity provider
            credentials: Client credentials of this game server
            token_endpoint: Full URL of the identity provider's token endpoint
            refresh_multiplier: Fraction of the token lifetime after which it is refreshed,
                strictly between 0 and 1
            retry_config: Backoff used within one acquisition cycle
            failure_cooldown: Seconds to wait after a cycle exhausted its retries
            clock: Returns the current aware UTC time
            sleep: Awaitable sleep used for scheduling and backoff
        """
        if not 0 < refresh_multiplier < 1:
            raise ValueError("refresh_multiplier must be strictly between 0 and 1")
        if failure_cooldown <= 0:
            raise ValueError("failure_cooldown must be positive")

        self._transport = transport
        self._credentials = credentials
        self._token_endpoint = token_endpoint
        self.refresh_multiplier = refresh_multiplier
        self.retry_config = retry_config or RetryConfig()
        self.failure_cooldown = failure_cooldown
        self._clock = clock
        self._sleep = sleep

        self._current: Optional[ServiceToken] = None
        self._lock = asyncio.Lock()
        self._refresh_task: Optional[asyncio.Task] = None
        self._fetch_started = False
        self._consecutive_failures = 0
        self._last_error: Optional[str] = None

    @property
    def credentials(self) -> ServiceCredentials:
        return self._credentials

    @property
    def token_endpoint(self) -> str:
        return self._token_endpoint

    @property
    def is_running(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    def configure(
        self,
        credentials: Optional[ServiceCredentials] = None,
        token_endpoint: Optional[str] = None,
    ) -> None:
        """
        Replace the credentials and/or token endpoint before the first fetch.

        Raises:
            ReconfigurationError: If a token fetch has already been attempted
        """
        if self._fetch_started:
            raise ReconfigurationError(
                "Service credentials cannot be changed after the first token fetch"
            )
        if credentials is not None:
            self._credentials = credentials
        if token_endpoint is not None:
            self._token_endpoint = token_endpoint
        logger.info(
            f"Service token manager configured for client '{self._credentials.client_id}' "
            f"at {self._token_endpoint}"
        )

    def current_token(self) -> ServiceToken:
        """
        Return the current service token without any I/O.
        The token may be expired if refreshes have been failing; callers check.

        Raises:
            TokenNotYetAcquiredError: If no token has been acquired yet
        """
        token = self._current
        if token is None:
            raise TokenNotYetAcquiredError("No service token has been acquired yet")
        return token

    def next_refresh_at(self) -> Optional[datetime]:
        token = self._current
        if token is None:
            return None
        return token.refresh_due_at(self.refresh_multiplier)

    async def acquire_token(self) -> ServiceToken:
        """
        Request a new service token and make it current.

        A failure leaves any previously held token in place. While the refresh
        task runs, the next refresh is scheduled from the new token; before
        ``start()`` nothing refreshes it.

        Returns:
            ServiceToken: The newly acquired token

        Raises:
            TransportFailureError: The identity provider could not be reached
            AuthorityRejectedError: The credentials were rejected
            MalformedResponseError: The response was not a valid token response
        """
        self._fetch_started = True
        async with self._lock:
            try:
                token = await self._request_token()
            except CredentialBrokerError as e:
                self._consecutive_failures += 1
                self._last_error = f"{e.error_type}: {e.message}"
                raise

            self._current = token
            self._consecutive_failures = 0
            self._last_error = None
            logger.info(
                f"Acquired service token valid until {token.expires_at.isoformat()}, "
                f"next refresh at {token.refresh_due_at(self.refresh_multiplier).isoformat()}"
            )
            return token

    async def _request_token(self) -> ServiceToken:
        credentials = self._credentials
        body = urlencode(
            {
                "grant_type": "client_credentials",
                "client_id": credentials.client_id,
                "client_secret": credentials.client_secret.get_secret_value(),
                "audience": credentials.audience,
            }
        )
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }

        # Lifetime is counted from before the request so expiry errs early
        issued_at = self._clock()
        logger.debug(f"Requesting service token from {self._token_endpoint}")
        try:
            response = await self._transport.post(self._token_endpoint, headers, body)
        except TransportError as e:
            raise TransportFailureError(f"Identity provider unreachable: {str(e)}") from e

        if response.status_code >= 500:
            raise TransportFailureError(
                f"Identity provider returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            reason = _oauth_error_description(response.body)
            raise AuthorityRejectedError(
                f"Identity provider rejected the client credentials "
                f"(HTTP {response.status_code}{': ' + reason if reason else ''})",
                status_code=response.status_code,
            )
        if response.status_code != 200:
            raise MalformedResponseError(
                f"Unexpected HTTP {response.status_code} from identity provider",
                status_code=response.status_code,
            )

        try:
            parsed = TokenResponse.model_validate_json(response.body)
        except ValidationError as e:
            raise MalformedResponseError(
                f"Invalid token response: {e.error_count()} validation error(s)"
            ) from e
        token = ServiceToken.from_response(parsed, issued_at=issued_at)
        try:
            # Expiry and refresh times must be representable before the token is installed
            token.expires_at
            token.refresh_due_at(self.refresh_multiplier)
        except OverflowError as e:
            raise MalformedResponseError(
                f"Token lifetime of {parsed.expires_in}s is out of range"
            ) from e
        return token

    async def _acquire_with_retry(self) -> ServiceToken:
        return await retry_async(
            self.acquire_token,
            self.retry_config,
            sleep=self._sleep,
            description="Service token acquisition",
        )

    def _seconds_until_refresh(self) -> float:
        due = self.next_refresh_at()
        if due is None:
            return 0.0
        return (due - self._clock()).total_seconds()

    async def _refresh_loop(self) -> None:
        """Refresh the token each time it reaches its refresh point. Ends only when cancelled."""
        while True:
            delay = self._seconds_until_refresh()
            if delay > 0:
                await self._sleep(delay)
                # The token may have been replaced while sleeping
                continue

            try:
                await self._acquire_with_retry()
            except AuthorityRejectedError as e:
                logger.error(
                    f"Service token refresh rejected by identity provider, check the "
                    f"server's client credentials: {e.message}"
                )
                self._log_fallback()
                await self._sleep(self.failure_cooldown)
            except CredentialBrokerError as e:
                logger.warning(f"Service token refresh failed: {e.error_type}: {e.message}")
                self._log_fallback()
                await self._sleep(self.failure_cooldown)
            except Exception as e:
                logger.error(
                    f"Unexpected error during service token refresh: {str(e)}", exc_info=True
                )
                self._log_fallback()
                await self._sleep(self.failure_cooldown)

    def _log_fallback(self) -> None:
        token = self._current
        now = self._clock()
        if token is not None and not token.is_expired(now):
            logger.warning(
                f"Keeping current service token until it expires at "
                f"{token.expires_at.isoformat()}; retrying in {self.failure_cooldown:.0f}s"
            )
        else:
            logger.error(
                f"No valid service token held; team resolution is unavailable. "
                f"Retrying in {self.failure_cooldown:.0f}s"
            )

    async def start(self) -> ServiceToken:
        """
        Acquire the first token and start the background refresh task.

        Returns:
            ServiceToken: The current token

        Raises:
            CredentialBrokerError: If the first acquisition fails after retries
        """
        token = self._current
        if token is None or token.is_expired(self._clock()):
            try:
                token = await self._acquire_with_retry()
            except CredentialBrokerError as e:
                logger.error(f"Could not acquire the initial service token: {e.message}")
                raise

        if not self.is_running:
            self._refresh_task = asyncio.create_task(
                self._refresh_loop(), name="service-token-refresh"
            )
            logger.info("Service token refresh task started")
        return token

    async def stop(self) -> None:
        """Cancel the refresh task, abandoning any in-flight refresh."""
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Service token refresh task had failed: {str(e)}", exc_info=True)
            finally:
                self._refresh_task = None
            logger.info("Service token refresh task stopped")

    def status(self) -> ServiceTokenStatus:
        token = self._current
        if token is None:
            return ServiceTokenStatus(
                acquired=False,
                consecutive_failures=self._consecutive_failures,
                last_error=self._last_error,
            )
        now = self._clock()
        return ServiceTokenStatus(
            acquired=True,
            issued_at=token.issued_at,
            expires_at=token.expires_at,
            seconds_remaining=token.seconds_remaining(now),
            next_refresh_at=token.refresh_due_at(self.refresh_multiplier),
            consecutive_failures=self._consecutive_failures,
            last_error=self._last_error,
        )
