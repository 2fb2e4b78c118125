"""
Session endpoints: team resolution for connecting players and connection teardown.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from session_broker_service.broker import CredentialBroker
from session_broker_service.dependencies import get_broker
from session_broker_service.rate_limiting import TEAM_RESOLUTION_LIMIT, limiter
from session_broker_service.schemas.common import ErrorResponse
from session_broker_service.schemas.session_schemas import TeamResolutionBody
from session_broker_service.schemas.token_schemas import TeamIdentity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["Sessions"])


@router.post(
    "/{connection_id}/team",
    response_model=TeamIdentity,
    status_code=status.HTTP_200_OK,
    summary="Resolve the team of a connecting player",
    responses={
        status.HTTP_401_UNAUTHORIZED: {
            "description": "The player's token was rejected; the player must log in again",
            "model": ErrorResponse,
        },
        status.HTTP_502_BAD_GATEWAY: {
            "description": "Gamebrain rejected the service token or answered malformed data",
            "model": ErrorResponse,
        },
        status.HTTP_503_SERVICE_UNAVAILABLE: {
            "description": "No service token is available or Gamebrain is unreachable",
            "model": ErrorResponse,
        },
    },
)
@limiter.limit(TEAM_RESOLUTION_LIMIT)
async def resolve_team(
    request: Request,
    connection_id: str,
    body: TeamResolutionBody,
    broker: CredentialBroker = Depends(get_broker),
) -> TeamIdentity:
    """
    Exchange the player's forwarded token for their team ID and remember it
    for the lifetime of the connection.
    """
    return await broker.resolve_team(
        connection_id, body.client_token, host_identifier=body.host_identifier
    )


@router.get(
    "/{connection_id}/team",
    response_model=TeamIdentity,
    responses={status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}},
)
async def get_team(
    connection_id: str,
    broker: CredentialBroker = Depends(get_broker),
) -> TeamIdentity:
    team = broker.team_for(connection_id)
    if team is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No team resolved for connection {connection_id}",
        )
    return team


@router.delete("/{connection_id}", status_code=status.HTTP_204_NO_CONTENT)
async def close_connection(
    connection_id: str,
    broker: CredentialBroker = Depends(get_broker),
) -> Response:
    """Forget the connection's team and abandon any resolution still in flight."""
    broker.connection_closed(connection_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
