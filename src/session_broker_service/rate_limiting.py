"""
Rate limiting configuration for the Session Broker Service.
"""

import logging
from typing import Callable

from slowapi import Limiter
from slowapi.util import get_remote_address

from session_broker_service.config import settings

logger = logging.getLogger(__name__)

TEAM_RESOLUTION_LIMIT = settings.RATE_LIMIT_TEAM_RESOLUTION


def get_key_function() -> Callable:
    """
    Return the appropriate key function for rate limiting.

    In development and testing every caller shares one bucket;
    elsewhere the limit applies per client IP.
    """
    if settings.is_development() or settings.is_testing():
        logger.debug("Using development rate limiting key function")
        return lambda request: "development"
    logger.debug("Using production rate limiting key function based on client IP")
    return get_remote_address


limiter = Limiter(key_func=get_key_function())
