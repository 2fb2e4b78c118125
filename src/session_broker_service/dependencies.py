"""
FastAPI dependencies.
"""

from fastapi import HTTPException, Request, status

from session_broker_service.broker import CredentialBroker


def get_broker(request: Request) -> CredentialBroker:
    """
    Return the broker created by the application lifespan.

    Raises:
        HTTPException: If the broker has not been started
    """
    broker = getattr(request.app.state, "broker", None)
    if broker is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Credential broker is not running",
        )
    return broker
