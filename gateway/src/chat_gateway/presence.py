from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Set

from .hub import ONLINE_USERS, USER_OFFLINE, USER_ONLINE, ConnectionHub, Event
from .users import avatar_for


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PresenceIdentity:
    user_id: str
    username: str
    avatar: str


class PresenceRegistry:
    """Tracks which users have live connections and emits online/offline edges.

    A user may hold several connections at once. ``user_online`` is broadcast
    only when the first connection for a user is added and ``user_offline``
    only when the last one is removed. Both checks run in the same
    synchronous step as the mutation, so no other task can interleave.
    """

    def __init__(self, hub: ConnectionHub) -> None:
        self._hub = hub
        self._identities: Dict[str, PresenceIdentity] = {}
        self._connections: Dict[str, Set[str]] = {}

    def connect(self, connection_id: str, user_id: str, username: str | None = None, avatar: str | None = None) -> List[Dict[str, Any]]:
        """Bind ``connection_id`` to a user and return the online snapshot sent to it."""

        username = username or ""
        identity = PresenceIdentity(user_id=user_id, username=username, avatar=avatar or avatar_for(username))

        previous = self._identities.get(connection_id)
        if previous is not None and previous.user_id != user_id:
            self._remove(connection_id, previous)

        self._identities[connection_id] = identity
        connections = self._connections.get(user_id)
        first = connections is None
        if first:
            connections = set()
            self._connections[user_id] = connections
        connections.add(connection_id)

        if first:
            self._hub.broadcast(
                Event(USER_ONLINE, {"userId": user_id, "username": identity.username, "avatar": identity.avatar})
            )
            logger.info("%s online (%s)", identity.username or user_id, connection_id)

        snapshot = [{"id": uid, "isOnline": True} for uid in self._connections]
        self._hub.send(connection_id, Event(ONLINE_USERS, snapshot))
        return snapshot

    def disconnect(self, connection_id: str) -> bool:
        """Unbind ``connection_id``. Returns True when the user went offline."""

        identity = self._identities.get(connection_id)
        if identity is None:
            return False
        return self._remove(connection_id, identity)

    def _remove(self, connection_id: str, identity: PresenceIdentity) -> bool:
        self._identities.pop(connection_id, None)
        connections = self._connections.get(identity.user_id)
        if connections is None:
            return False
        connections.discard(connection_id)
        if connections:
            return False
        self._connections.pop(identity.user_id, None)
        self._hub.broadcast(Event(USER_OFFLINE, {"userId": identity.user_id}))
        logger.info("%s offline (%s)", identity.username or identity.user_id, connection_id)
        return True

    def connections_for(self, user_id: str) -> FrozenSet[str]:
        return frozenset(self._connections.get(user_id, ()))

    def identity(self, connection_id: str) -> PresenceIdentity | None:
        return self._identities.get(connection_id)

    def is_online(self, user_id: str) -> bool:
        return user_id in self._connections

    def online_user_ids(self) -> List[str]:
        return list(self._connections)

    def online_count(self) -> int:
        return len(self._connections)

    def close(self) -> None:
        """Drop all presence state without emitting events (process shutdown)."""

        self._identities.clear()
        self._connections.clear()
