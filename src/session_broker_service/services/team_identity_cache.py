"""
Team Identity Cache: connection ID -> resolved TeamIdentity.
"""

import logging
from typing import Callable, Dict, List, Optional

from session_broker_service.schemas.token_schemas import TeamIdentity

logger = logging.getLogger(__name__)

# Called with (connection_id, team) after a set, or (connection_id, None) after a removal
TeamListener = Callable[[str, Optional[TeamIdentity]], None]


class TeamIdentityCache:
    """
    Process-lifetime mapping whose entries live only as long as their connection.
    Listeners let the session owner react when a team is resolved or dropped.
    """

    def __init__(self) -> None:
        self._teams: Dict[str, TeamIdentity] = {}
        self._listeners: List[TeamListener] = []

    def get(self, connection_id: str) -> Optional[TeamIdentity]:
        return self._teams.get(connection_id)

    def set(self, connection_id: str, team: TeamIdentity) -> None:
        previous = self._teams.get(connection_id)
        self._teams[connection_id] = team
        if previous is not None and previous != team:
            logger.warning(
                f"Team for connection {connection_id} changed from "
                f"{previous.team_id} to {team.team_id}"
            )
        self._notify(connection_id, team)

    def remove(self, connection_id: str) -> Optional[TeamIdentity]:
        removed = self._teams.pop(connection_id, None)
        if removed is not None:
            self._notify(connection_id, None)
        return removed

    def clear(self) -> None:
        for connection_id in list(self._teams):
            self.remove(connection_id)

    def connections(self) -> List[str]:
        return list(self._teams)

    def add_listener(self, listener: TeamListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: TeamListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, connection_id: str, team: Optional[TeamIdentity]) -> None:
        for listener in list(self._listeners):
            try:
                listener(connection_id, team)
            except Exception as e:
                logger.error(
                    f"Team listener {listener!r} failed for connection {connection_id}: {str(e)}",
                    exc_info=True,
                )

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._teams

    def __len__(self) -> int:
        return len(self._teams)
