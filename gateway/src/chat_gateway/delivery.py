from __future__ import annotations

import logging
from typing import Callable

from .errors import StorageError
from .hub import MESSAGE_SENT, RECEIVE_MESSAGE, USER_TYPING, ConnectionHub, Event
from .messages import AttachmentRef, Message, MessageStore, _now_ms, build_message
from .presence import PresenceRegistry


logger = logging.getLogger(__name__)


class DeliveryRouter:
    """Persists a message and pushes it to the receiver's live connections.

    Persistence is attempted first, but fan-out never depends on it: when the
    store fails the locally built message is delivered instead. The sender's
    confirmation goes only to the connection that sent the message.
    """

    def __init__(
        self,
        presence: PresenceRegistry,
        hub: ConnectionHub,
        store: MessageStore,
        *,
        now_func: Callable[[], int] = _now_ms,
    ) -> None:
        self._presence = presence
        self._hub = hub
        self._store = store
        self._now = now_func

    async def send(
        self,
        origin_connection_id: str | None,
        sender_id: str,
        receiver_id: str,
        body: str | None,
        kind: str | None = None,
        attachment: AttachmentRef | None = None,
        *,
        client_id: str | None = None,
    ) -> Message:
        timestamp_ms = self._now()
        local_id = client_id if isinstance(client_id, str) and client_id else str(timestamp_ms)
        message = build_message(
            message_id=local_id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            body=body,
            kind=kind,
            attachment=attachment,
            timestamp_ms=timestamp_ms,
        )

        try:
            message = await self._store.append(message)
        except StorageError as exc:
            logger.warning("Failed to save message %s from %s: %s", message.id, sender_id, exc)

        payload = message.to_dict()
        delivered = self._hub.send_many(self._presence.connections_for(receiver_id), Event(RECEIVE_MESSAGE, payload))
        if delivered == 0:
            logger.debug("Receiver %s has no live connections; message %s not pushed", receiver_id, message.id)

        if origin_connection_id is not None:
            self._hub.send(origin_connection_id, Event(MESSAGE_SENT, payload))
        return message


class TypingNotifier:
    """Forwards ephemeral typing signals; nothing is stored or retried."""

    def __init__(self, presence: PresenceRegistry, hub: ConnectionHub) -> None:
        self._presence = presence
        self._hub = hub

    def notify(self, sender_id: str, receiver_id: str, username: str | None, is_typing: bool) -> int:
        event = Event(USER_TYPING, {"userId": sender_id, "username": username, "isTyping": bool(is_typing)})
        return self._hub.send_many(self._presence.connections_for(receiver_id), event)
