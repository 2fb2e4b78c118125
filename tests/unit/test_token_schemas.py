"""
Unit tests for token and team schemas.
"""
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from session_broker_service.schemas.token_schemas import (
    ClientToken,
    ServiceCredentials,
    ServiceToken,
    TeamIdentity,
    TokenResponse,
)

ISSUED_AT = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def service_token() -> ServiceToken:
    response = TokenResponse(access_token="secret-access-token", expires_in=3600)
    return ServiceToken.from_response(response, issued_at=ISSUED_AT)


class TestServiceToken:
    def test_expiry_and_refresh_point(self, service_token):
        assert service_token.expires_at == ISSUED_AT + timedelta(hours=1)
        assert service_token.refresh_due_at(0.9) == ISSUED_AT + timedelta(seconds=3240)

    def test_expired_at_and_after_expiry(self, service_token):
        assert not service_token.is_expired(ISSUED_AT + timedelta(seconds=3599))
        assert service_token.is_expired(ISSUED_AT + timedelta(seconds=3600))
        assert service_token.seconds_remaining(ISSUED_AT + timedelta(hours=2)) == 0.0

    def test_access_token_not_in_repr(self, service_token):
        assert "secret-access-token" not in repr(service_token)

    def test_token_is_immutable(self, service_token):
        with pytest.raises(ValidationError):
            service_token.access_token = "other"

    def test_token_response_rejects_absurd_lifetime(self):
        with pytest.raises(ValidationError):
            TokenResponse(access_token="abc", expires_in=10**12)

    def test_token_response_ignores_extra_fields(self):
        response = TokenResponse.model_validate(
            {"access_token": "abc", "expires_in": 60, "refresh_token": "x", "id_token": "y"}
        )

        assert response.token_type == "Bearer"


def test_client_secret_is_masked():
    credentials = ServiceCredentials(client_id="game-server", client_secret="hunter2")

    assert "hunter2" not in repr(credentials)
    assert credentials.client_secret.get_secret_value() == "hunter2"
    assert credentials.audience == "gamestate-api"


class TestClientToken:
    def test_envelope_with_profile(self):
        token = ClientToken.model_validate(
            {
                "access_token": "player-token",
                "profile": {"sub": "user-1", "amr": ["pwd"], "unknown_claim": True},
                "expires_at": 1704110400,
                "session_state": "abc",
            }
        )

        assert token.profile.sub == "user-1"
        assert token.profile.amr == ["pwd"]

    def test_expiry(self):
        token = ClientToken(access_token="player-token", expires_at=int(ISSUED_AT.timestamp()))

        assert token.is_expired(ISSUED_AT)
        assert not token.is_expired(ISSUED_AT - timedelta(seconds=1))

    def test_without_expiry_never_expires_locally(self):
        assert not ClientToken(access_token="player-token").is_expired(ISSUED_AT)


class TestTeamIdentity:
    def test_parsed_from_backend_field_name(self):
        team = TeamIdentity.model_validate_json('{"teamID": "blue-7"}')

        assert team.team_id == "blue-7"
        assert team.model_dump(by_alias=True) == {"teamID": "blue-7"}

    @pytest.mark.parametrize("body", ['{"teamID": ""}', "{}", '{"team_id": 7}'])
    def test_invalid_payloads(self, body):
        with pytest.raises(ValidationError):
            TeamIdentity.model_validate_json(body)
