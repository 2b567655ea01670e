"""In-memory presence tracking and per-user event fan-out."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ..core.errors import InvalidState, NotFound, require_text

SendCallable = Callable[[dict], Awaitable[None]]

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PresenceConnection:
    """One live transport connection; ``user_id`` stays None until registration."""

    connection_id: str
    send: SendCallable
    user_id: Optional[str] = None


class PresenceRegistry:
    """Map user identities to their live connections and deliver events to them."""

    def __init__(self, send_timeout: float = 5.0) -> None:
        self._connections: Dict[str, PresenceConnection] = {}
        self._users: Dict[str, Set[str]] = {}
        self._send_timeout = send_timeout
        self._lock = asyncio.Lock()

    async def attach(self, connection: PresenceConnection) -> None:
        """Track a freshly accepted connection that is not yet bound to a user.

        Connection ids are unique among live connections; reusing one raises ``InvalidState``.
        """

        async with self._lock:
            if connection.connection_id in self._connections:
                raise InvalidState(f"Connection {connection.connection_id} is already attached")
            self._connections[connection.connection_id] = connection

    async def register(self, user_id: str, connection_id: str) -> None:
        """Bind a live connection to ``user_id``; re-registering the same pair is a no-op."""

        user_id = require_text(user_id, "userId")
        async with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                raise NotFound(f"Connection {connection_id} is not attached")
            if connection.user_id is not None and connection.user_id != user_id:
                self._unbind(connection.user_id, connection_id)
            connection.user_id = user_id
            self._users.setdefault(user_id, set()).add(connection_id)

    async def unregister(self, user_id: str, connection_id: str) -> None:
        """Drop the pair, cleaning up users with no connections left."""

        async with self._lock:
            connection = self._connections.get(connection_id)
            if connection is not None and connection.user_id == user_id:
                connection.user_id = None
            self._unbind(user_id, connection_id)

    async def disconnect(self, connection_id: str) -> Optional[str]:
        """Forget a closed connection and return the user it belonged to, if any."""

        async with self._lock:
            connection = self._connections.pop(connection_id, None)
            if connection is None or connection.user_id is None:
                return None
            user_id = connection.user_id
            connection.user_id = None
            self._unbind(user_id, connection_id)
            return user_id

    async def send_to_user(self, user_id: str, event: str, payload: dict[str, Any]) -> int:
        """Deliver ``event`` to every live connection of ``user_id``.

        Offline users are a silent no-op. Failed or slow connections are logged and skipped.
        Returns the number of connections that received the event.
        """

        async with self._lock:
            targets = [self._connections[cid] for cid in self._users.get(user_id, ()) if cid in self._connections]

        if not targets:
            return 0

        message = {"type": event, "payload": payload}
        results = await asyncio.gather(*(self._deliver(connection, message) for connection in targets))
        return sum(results)

    async def notify(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        await self.send_to_user(user_id, event, payload)

    def is_online(self, user_id: str) -> bool:
        return bool(self._users.get(user_id))

    def connections_for(self, user_id: str) -> set[str]:
        return set(self._users.get(user_id, ()))

    def owner_of(self, connection_id: str) -> Optional[str]:
        connection = self._connections.get(connection_id)
        return connection.user_id if connection else None

    def online_users(self) -> list[str]:
        return list(self._users)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._users

    async def _deliver(self, connection: PresenceConnection, message: dict) -> int:
        try:
            await asyncio.wait_for(connection.send(message), timeout=self._send_timeout)
        except asyncio.TimeoutError:
            logger.warning("Timed out delivering %s to connection %s", message["type"], connection.connection_id)
            return 0
        except Exception as exc:  # noqa: BLE001 - delivery is best-effort
            logger.warning(
                "Dropped %s for connection %s: %s", message["type"], connection.connection_id, exc
            )
            return 0
        return 1

    def _unbind(self, user_id: str, connection_id: str) -> None:
        connections = self._users.get(user_id)
        if not connections:
            return
        connections.discard(connection_id)
        if not connections:
            self._users.pop(user_id, None)
