"""
Unit tests for settings and launch flag parsing.
"""
import pytest
from pydantic import ValidationError

from session_broker_service import config
from session_broker_service.config import (
    Environment,
    Settings,
    build_settings,
    parse_command_line_args,
)


class TestSettings:
    def test_defaults(self):
        built = Settings(SERVER_CONTAINER_HOSTNAME="gs-1")

        assert built.CLIENT_ID == "game-server"
        assert built.AUDIENCE == "gamestate-api"
        assert built.TOKEN_REFRESH_MULTIPLIER == 0.9
        assert built.REUSE_CACHED_TEAM is True
        assert built.host_identifier == "gs-1"

    def test_running_under_tests(self):
        assert config.settings.ENVIRONMENT == Environment.TESTING
        assert config.settings.is_testing()

    def test_trailing_slashes_are_trimmed(self):
        built = Settings(IDENTITY_URI="http://identity.test/", GAMEBRAIN_URI="http://gamebrain.test//")

        assert built.IDENTITY_URI == "http://identity.test"
        assert built.token_endpoint == "http://identity.test/connect/token"
        assert built.team_endpoint == "http://gamebrain.test/privileged/get_team"

    @pytest.mark.parametrize("multiplier", [0, 1, 1.2, -0.5])
    def test_refresh_multiplier_outside_unit_interval_rejected(self, multiplier):
        with pytest.raises(ValidationError):
            Settings(TOKEN_REFRESH_MULTIPLIER=multiplier)

    def test_values_read_from_prefixed_environment(self, monkeypatch):
        monkeypatch.setenv("SESSION_BROKER_SERVICE_CLIENT_ID", "arena-server")
        monkeypatch.setenv("SESSION_BROKER_SERVICE_TOKEN_REFRESH_MULTIPLIER", "0.75")

        built = Settings()

        assert built.CLIENT_ID == "arena-server"
        assert built.TOKEN_REFRESH_MULTIPLIER == 0.75

    def test_host_identifier_falls_back_to_hostname(self, monkeypatch):
        monkeypatch.setattr(config.socket, "gethostname", lambda: "container-42")

        assert Settings(SERVER_CONTAINER_HOSTNAME=None).host_identifier == "container-42"


class TestLaunchFlags:
    def test_flags_map_to_settings(self):
        overrides = parse_command_line_args(
            [
                "-gamebrainURI", "http://gamebrain.test",
                "-identityURI", "http://identity.test",
                "-clientID", "arena-server",
                "-clientSecret", "hunter2",
            ]
        )

        assert overrides == {
            "GAMEBRAIN_URI": "http://gamebrain.test",
            "IDENTITY_URI": "http://identity.test",
            "CLIENT_ID": "arena-server",
            "CLIENT_SECRET": "hunter2",
        }

    def test_switches(self):
        overrides = parse_command_line_args(["-dev", "-debug"])

        assert overrides == {"DEV_MODE": True, "DEBUG_MODE": True, "LOGGING_LEVEL": "DEBUG"}

    def test_empty_values_and_unknown_flags_are_ignored(self):
        overrides = parse_command_line_args(["-clientSecret", "", "-batchmode", "-nographics"])

        assert overrides == {}

    def test_build_settings_applies_flags(self):
        built = build_settings(["-clientID", "from-flag", "-identityURI", "http://identity.test/"])

        assert built.CLIENT_ID == "from-flag"
        assert built.token_endpoint == "http://identity.test/connect/token"
