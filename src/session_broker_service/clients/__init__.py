"""
Client modules for external service integrations.
"""

from session_broker_service.clients.transport import (
    HttpxTransport,
    Transport,
    TransportError,
    TransportResponse,
)

__all__ = ["HttpxTransport", "Transport", "TransportError", "TransportResponse"]
