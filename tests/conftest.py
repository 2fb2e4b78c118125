"""
Main conftest file that imports and re-exports all fixtures from modular files.
This approach improves maintainability by organizing fixtures into logical modules.
"""

import os

from dotenv import load_dotenv

# Explicitly load the test environment variables before importing any app modules
dotenv_path = os.path.join(os.path.dirname(__file__), "..", ".env.test")
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path=dotenv_path, override=True)
os.environ.setdefault("SESSION_BROKER_SERVICE_ENVIRONMENT", "testing")

# Now reload the config to ensure it picks up test settings
from importlib import reload

from session_broker_service import config

reload(config)

# Import and re-export fixtures from modular files
# The imports below register the fixtures with pytest
from tests.fixtures.client import app_settings, client, fastapi_app
from tests.fixtures.mocks import clock, fake_transport
from tests.fixtures.services import (
    broker,
    credentials,
    relay,
    team_cache,
    token_manager,
)
