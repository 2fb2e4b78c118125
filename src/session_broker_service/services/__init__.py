"""
Core services: service token upkeep, client token relay and the team cache.
"""

from session_broker_service.services.client_token_relay import ClientTokenRelay
from session_broker_service.services.service_token_manager import ServiceTokenManager
from session_broker_service.services.team_identity_cache import TeamIdentityCache

__all__ = ["ClientTokenRelay", "ServiceTokenManager", "TeamIdentityCache"]
