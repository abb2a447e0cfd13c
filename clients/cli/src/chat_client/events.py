"""Pure live-event handlers for the chat list.

Each handler maps ``(state, body, now_ms)`` to a new :class:`ChatState`;
nothing is mutated in place, so handlers can be tested without a socket.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from chat_client.contacts import ConversationPreview, preview_text

TYPING_TIMEOUT_MS = 3000


@dataclass(frozen=True)
class ChatState:
    current_user_id: str
    contacts: Tuple[ConversationPreview, ...] = ()
    active_contact_id: Optional[str] = None
    typing: Mapping[str, int] = field(default_factory=dict)

    def contact(self, contact_id: str) -> Optional[ConversationPreview]:
        for preview in self.contacts:
            if preview.contact_id == contact_id:
                return preview
        return None

    def typing_users(self) -> List[str]:
        return sorted(self.typing)


Handler = Callable[[ChatState, Any, int], ChatState]


def _patch(state: ChatState, contact_id: str, update: Callable[[ConversationPreview], ConversationPreview]) -> ChatState:
    contacts = tuple(update(c) if c.contact_id == contact_id else c for c in state.contacts)
    return replace(state, contacts=contacts)


def on_online_users(state: ChatState, body: Any, now_ms: int) -> ChatState:
    online = {entry.get("id") for entry in body or [] if isinstance(entry, Mapping)}
    contacts = tuple(replace(c, is_online=c.contact_id in online) for c in state.contacts)
    return replace(state, contacts=contacts)


def on_user_online(state: ChatState, body: Any, now_ms: int) -> ChatState:
    return _patch(state, body.get("userId"), lambda c: replace(c, is_online=True))


def on_user_offline(state: ChatState, body: Any, now_ms: int) -> ChatState:
    return _patch(state, body.get("userId"), lambda c: replace(c, is_online=False))


def on_receive_message(state: ChatState, body: Any, now_ms: int) -> ChatState:
    sender_id = body.get("senderId")
    if not sender_id or body.get("receiverId") != state.current_user_id:
        return state
    increment = 0 if state.active_contact_id == sender_id else 1
    preview = preview_text(body)
    timestamp = body.get("timestamp")
    new_state = _patch(
        state,
        sender_id,
        lambda c: replace(c, last_message=preview, last_message_time=timestamp, unread=c.unread + increment),
    )
    if sender_id in new_state.typing:
        typing = dict(new_state.typing)
        typing.pop(sender_id)
        new_state = replace(new_state, typing=typing)
    return new_state


def on_message_sent(state: ChatState, body: Any, now_ms: int) -> ChatState:
    receiver_id = body.get("receiverId")
    if not receiver_id or body.get("senderId") != state.current_user_id:
        return state
    preview = preview_text(body)
    timestamp = body.get("timestamp")
    return _patch(state, receiver_id, lambda c: replace(c, last_message=preview, last_message_time=timestamp))


def on_user_typing(state: ChatState, body: Any, now_ms: int) -> ChatState:
    user_id = body.get("userId")
    if not user_id:
        return state
    typing = dict(state.typing)
    if body.get("isTyping"):
        typing[user_id] = now_ms + TYPING_TIMEOUT_MS
    else:
        typing.pop(user_id, None)
    return replace(state, typing=typing)


HANDLERS: Dict[str, Handler] = {
    "online_users": on_online_users,
    "user_online": on_user_online,
    "user_offline": on_user_offline,
    "receive_message": on_receive_message,
    "message_sent": on_message_sent,
    "user_typing": on_user_typing,
}


def reduce(state: ChatState, event: str, body: Any, *, now_ms: Optional[int] = None) -> ChatState:
    handler = HANDLERS.get(event)
    if handler is None:
        return state
    if event != "online_users" and not isinstance(body, Mapping):
        return state
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return handler(state, body, now_ms)


def select_contact(state: ChatState, contact_id: Optional[str]) -> ChatState:
    """Make ``contact_id`` the active conversation and clear its unread count."""

    new_state = replace(state, active_contact_id=contact_id)
    if contact_id is None:
        return new_state
    return _patch(new_state, contact_id, lambda c: replace(c, unread=0))


def expire_typing(state: ChatState, now_ms: int) -> ChatState:
    typing = {user_id: deadline for user_id, deadline in state.typing.items() if deadline > now_ms}
    if len(typing) == len(state.typing):
        return state
    return replace(state, typing=typing)


class EventChannel:
    """Subscription over a bounded set of server event kinds.

    Frames use the gateway envelope ``{"v": 1, "t": kind, "body": ...}``;
    kinds outside the subscription are ignored.
    """

    def __init__(self, state: ChatState, kinds: Iterable[str] | None = None) -> None:
        self.state = state
        self.kinds: FrozenSet[str] = frozenset(HANDLERS) if kinds is None else frozenset(kinds) & frozenset(HANDLERS)
        self._listeners: List[Callable[[str, ChatState], None]] = []

    def subscribe(self, listener: Callable[[str, ChatState], None]) -> None:
        self._listeners.append(listener)

    def dispatch(self, frame: Mapping[str, Any], *, now_ms: Optional[int] = None) -> ChatState:
        kind = frame.get("t")
        if kind not in self.kinds:
            return self.state
        self.state = reduce(self.state, kind, frame.get("body"), now_ms=now_ms)
        for listener in list(self._listeners):
            listener(kind, self.state)
        return self.state

    def select(self, contact_id: Optional[str]) -> ChatState:
        self.state = select_contact(self.state, contact_id)
        return self.state
