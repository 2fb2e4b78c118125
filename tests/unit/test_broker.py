"""
Unit tests for the credential broker lifecycle.
"""
import asyncio
import logging

import pytest

from session_broker_service.broker import CredentialBroker
from session_broker_service.config import Settings
from session_broker_service.exceptions import AuthorityRejectedError, ReconfigurationError
from session_broker_service.schemas.token_schemas import ServiceCredentials
from tests.fixtures.mocks import TEAM_URL, TOKEN_URL, json_response, wait_until


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_acquires_service_token(self, broker):
        token = await broker.start()

        assert broker.started
        assert broker.current_token() is token
        assert broker.token_status().acquired
        assert broker.token_manager.is_running

    @pytest.mark.asyncio
    async def test_start_fails_when_credentials_rejected(self, broker, fake_transport):
        fake_transport.responses[TOKEN_URL] = [json_response({"error": "invalid_client"}, 401)]

        with pytest.raises(AuthorityRejectedError):
            await broker.start()

        assert not broker.token_manager.is_running

    @pytest.mark.asyncio
    async def test_stop_releases_everything_and_is_idempotent(self, broker, fake_transport):
        await broker.start()
        await broker.resolve_team("conn-1", "player-token")

        await broker.stop()
        await broker.stop()

        assert fake_transport.closed
        assert broker.relay.closed
        assert not broker.token_manager.is_running
        assert broker.team_for("conn-1") is None

    @pytest.mark.asyncio
    async def test_stop_cleans_up_after_refresh_task_failed(self, broker, fake_transport):
        await broker.start()
        await broker.resolve_team("conn-1", "player-token")
        await broker.token_manager.stop()

        async def crashed():
            raise RuntimeError("refresh task crashed")

        broker.token_manager._refresh_task = asyncio.create_task(crashed())
        await wait_until(lambda: broker.token_manager._refresh_task.done())

        await broker.stop()

        assert fake_transport.closed
        assert broker.team_for("conn-1") is None

    @pytest.mark.asyncio
    async def test_stop_cleans_up_when_relay_close_fails(self, broker, fake_transport, monkeypatch):
        await broker.start()
        await broker.resolve_team("conn-1", "player-token")

        async def failing_close():
            raise RuntimeError("relay close failed")

        monkeypatch.setattr(broker.relay, "close", failing_close)

        with pytest.raises(RuntimeError):
            await broker.stop()

        assert fake_transport.closed
        assert not broker.token_manager.is_running
        assert broker.team_for("conn-1") is None

    @pytest.mark.asyncio
    async def test_acquire_before_start_warns_token_is_not_refreshed(self, broker, caplog):
        with caplog.at_level(logging.WARNING):
            await broker.acquire_token()

        assert "will not be refreshed until start()" in caplog.text
        assert not broker.token_manager.is_running

    @pytest.mark.asyncio
    async def test_stopped_broker_cannot_restart(self, broker):
        await broker.stop()

        with pytest.raises(RuntimeError):
            await broker.start()


class TestReconfigure:
    @pytest.mark.asyncio
    async def test_reconfigure_before_start(self, broker):
        broker.reconfigure(
            credentials=ServiceCredentials(client_id="arena-server", client_secret="x"),
            identity_uri="http://identity.other/",
            gamebrain_uri="http://gamebrain.other",
        )

        assert broker.token_manager.credentials.client_id == "arena-server"
        assert broker.token_manager.token_endpoint == "http://identity.other/connect/token"
        assert broker.relay.team_endpoint == "http://gamebrain.other/privileged/get_team"

    @pytest.mark.asyncio
    async def test_reconfigure_rejected_after_start(self, broker):
        await broker.start()

        with pytest.raises(ReconfigurationError):
            broker.reconfigure(identity_uri="http://identity.other")

        assert broker.token_manager.token_endpoint == TOKEN_URL

    @pytest.mark.asyncio
    async def test_reconfigure_rejected_after_manual_fetch(self, broker):
        await broker.acquire_token()

        with pytest.raises(ReconfigurationError):
            broker.reconfigure(
                credentials=ServiceCredentials(client_id="late", client_secret="x")
            )


class TestSessions:
    @pytest.mark.asyncio
    async def test_team_lookup_and_connection_close(self, broker):
        await broker.start()

        team = await broker.resolve_team("conn-1", "player-token")

        assert broker.team_for("conn-1") == team
        broker.connection_closed("conn-1")
        assert broker.team_for("conn-1") is None


@pytest.mark.asyncio
async def test_from_settings_wires_endpoints(fake_transport, clock):
    built_settings = Settings(
        IDENTITY_URI="http://identity.test/",
        GAMEBRAIN_URI="http://gamebrain.test",
        CLIENT_ID="arena-server",
        CLIENT_SECRET="hunter2",
        SERVER_CONTAINER_HOSTNAME="gs-1",
    )
    broker = CredentialBroker.from_settings(
        built_settings, transport=fake_transport, clock=clock, sleep=clock.sleep
    )
    try:
        await broker.start()
        await broker.resolve_team("conn-1", "player-token")
    finally:
        await broker.stop()

    assert "client_id=arena-server" in fake_transport.requests_to(TOKEN_URL)[0].body
    team_request = fake_transport.requests_to(TEAM_URL)[0]
    assert team_request.json()["server_container_hostname"] == "gs-1"
    assert fake_transport.closed
