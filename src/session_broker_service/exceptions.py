"""
Error taxonomy for service token acquisition and team resolution.

Every error carries an ``error_type`` used in API responses and logs, and a
``retryable`` flag consulted by the retry helper.
"""

from typing import Optional


class CredentialBrokerError(Exception):
    """Base class for all broker errors."""

    error_type = "broker_error"
    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TransportFailureError(CredentialBrokerError):
    """The identity provider or Gamebrain could not be reached (or answered 5xx)."""

    error_type = "unreachable"
    retryable = True


class AuthorityRejectedError(CredentialBrokerError):
    """The service credentials or service token were rejected (4xx)."""

    error_type = "unauthorized"


class ClientTokenRejectedError(CredentialBrokerError):
    """The end-user token is invalid or expired; the player must log in again."""

    error_type = "client_token_rejected"


class MalformedResponseError(CredentialBrokerError):
    """The upstream response did not match the expected schema."""

    error_type = "malformed_response"
    retryable = True


class ServiceTokenUnavailableError(CredentialBrokerError):
    """No usable (acquired and unexpired) service token is held."""

    error_type = "service_token_unavailable"


class TokenNotYetAcquiredError(ServiceTokenUnavailableError):
    """No service token has been acquired since the process started."""

    error_type = "not_yet_acquired"


class BrokerClosedError(CredentialBrokerError):
    """The broker is shutting down; the result was discarded."""

    error_type = "broker_closed"


class ConnectionClosedError(CredentialBrokerError):
    """The connection closed while its team was being resolved."""

    error_type = "connection_closed"


class ReconfigurationError(CredentialBrokerError):
    """Credentials or endpoints were changed after the first token fetch."""

    error_type = "reconfiguration_rejected"
