"""
Fixtures wiring the broker components to the fake transport and clock.
"""
import pytest
import pytest_asyncio

from session_broker_service.broker import CredentialBroker
from session_broker_service.schemas.token_schemas import ServiceCredentials
from session_broker_service.services.client_token_relay import ClientTokenRelay
from session_broker_service.services.service_token_manager import ServiceTokenManager
from session_broker_service.services.team_identity_cache import TeamIdentityCache
from session_broker_service.utils.retry import RetryConfig
from tests.fixtures.mocks import TEAM_URL, TOKEN_URL

FAST_RETRY = RetryConfig(max_attempts=3, base_delay=1.0, max_delay=4.0)


@pytest.fixture
def credentials() -> ServiceCredentials:
    return ServiceCredentials(
        client_id="game-server", client_secret="s3cret value", audience="gamestate-api"
    )


@pytest_asyncio.fixture
async def token_manager(fake_transport, credentials, clock):
    manager = ServiceTokenManager(
        transport=fake_transport,
        credentials=credentials,
        token_endpoint=TOKEN_URL,
        refresh_multiplier=0.9,
        retry_config=FAST_RETRY,
        failure_cooldown=30.0,
        clock=clock,
        sleep=clock.sleep,
    )
    yield manager
    await manager.stop()


@pytest.fixture
def team_cache() -> TeamIdentityCache:
    return TeamIdentityCache()


@pytest_asyncio.fixture
async def relay(token_manager, fake_transport, team_cache, clock):
    token_relay = ClientTokenRelay(
        token_manager=token_manager,
        transport=fake_transport,
        cache=team_cache,
        team_endpoint=TEAM_URL,
        host_identifier="game-server-host-1",
        reuse_cached_team=True,
        retry_config=FAST_RETRY,
        clock=clock,
        sleep=clock.sleep,
    )
    yield token_relay
    await token_relay.close()


@pytest_asyncio.fixture
async def broker(token_manager, relay, team_cache, fake_transport):
    credential_broker = CredentialBroker(
        token_manager=token_manager,
        relay=relay,
        cache=team_cache,
        transport=fake_transport,
    )
    yield credential_broker
    await credential_broker.stop()
