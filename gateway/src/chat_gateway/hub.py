from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable


ONLINE_USERS = "online_users"
USER_ONLINE = "user_online"
USER_OFFLINE = "user_offline"
RECEIVE_MESSAGE = "receive_message"
MESSAGE_SENT = "message_sent"
USER_TYPING = "user_typing"

SERVER_EVENTS: FrozenSet[str] = frozenset(
    {ONLINE_USERS, USER_ONLINE, USER_OFFLINE, RECEIVE_MESSAGE, MESSAGE_SENT, USER_TYPING}
)


@dataclass(frozen=True)
class Event:
    """A named server-to-client event."""

    name: str
    body: Any

    def to_frame(self) -> Dict[str, Any]:
        return {"v": 1, "t": self.name, "body": self.body}


Callback = Callable[[Event], None]


@dataclass
class Subscription:
    connection_id: str
    callback: Callback
    kinds: FrozenSet[str] = field(default=SERVER_EVENTS)

    def deliver(self, event: Event) -> bool:
        if event.name not in self.kinds:
            return False
        self.callback(event)
        return True


class ConnectionHub:
    """Routes events to live connections, one subscription per connection."""

    def __init__(self) -> None:
        self._subscriptions: Dict[str, Subscription] = {}

    def attach(self, connection_id: str, callback: Callback, kinds: Iterable[str] | None = None) -> Subscription:
        selected = SERVER_EVENTS if kinds is None else frozenset(kinds) & SERVER_EVENTS
        subscription = Subscription(connection_id=connection_id, callback=callback, kinds=selected)
        self._subscriptions[connection_id] = subscription
        return subscription

    def detach(self, connection_id: str) -> None:
        self._subscriptions.pop(connection_id, None)

    def is_attached(self, connection_id: str) -> bool:
        return connection_id in self._subscriptions

    def send(self, connection_id: str, event: Event) -> bool:
        subscription = self._subscriptions.get(connection_id)
        if subscription is None:
            return False
        return subscription.deliver(event)

    def send_many(self, connection_ids: Iterable[str], event: Event) -> int:
        return sum(1 for connection_id in connection_ids if self.send(connection_id, event))

    def broadcast(self, event: Event) -> int:
        delivered = 0
        for subscription in list(self._subscriptions.values()):
            if subscription.deliver(event):
                delivered += 1
        return delivered

    def __len__(self) -> int:
        return len(self._subscriptions)
