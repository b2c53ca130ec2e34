"""Online collaborator tracking.

Keeps the set of collaborators connected to the project, fed by
clientTracking notifications and refreshed on demand from the server.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from leafsync.client.protocol import (
    CollaboratorDisconnected,
    CollaboratorUpdated,
    Disconnected,
    OnlineUser,
    ServerMessage,
)

if TYPE_CHECKING:
    from leafsync.client.connection import ConnectionManager

logger = logging.getLogger(__name__)


class CollaboratorRegistry:
    """Collaborators currently connected to the project."""

    def __init__(self, own_public_id: str | None = None) -> None:
        self._users: dict[str, OnlineUser] = {}
        self._own_public_id = own_public_id

    def set_own_public_id(self, public_id: str | None) -> None:
        """Exclude this client's own session from the registry."""
        self._own_public_id = public_id
        if public_id:
            self._users.pop(public_id, None)

    def handle(self, message: ServerMessage) -> None:
        """Connection listener consuming collaborator notifications."""
        if isinstance(message, CollaboratorUpdated):
            user = message.user
            if user.client_id == self._own_public_id:
                return
            user.last_updated = time.time()
            self._users[user.client_id] = user
        elif isinstance(message, CollaboratorDisconnected):
            if self._users.pop(message.client_id, None):
                logger.debug("Collaborator %s left", message.client_id)
        elif isinstance(message, Disconnected):
            self._users.clear()

    async def refresh(self, connection: ConnectionManager) -> list[OnlineUser]:
        """Replace the registry with the server's connected-user list."""
        users = await connection.get_connected_users()
        self._users = {
            u.client_id: u for u in users if u.client_id != self._own_public_id
        }
        return self.online()

    def online(self) -> list[OnlineUser]:
        """Collaborators ordered by most recent activity."""
        return sorted(self._users.values(), key=lambda u: u.last_updated, reverse=True)

    def __len__(self) -> int:
        return len(self._users)
