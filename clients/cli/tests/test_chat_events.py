from chat_client.contacts import ConversationPreview
from chat_client.events import (
    TYPING_TIMEOUT_MS,
    ChatState,
    EventChannel,
    expire_typing,
    reduce,
    select_contact,
)


def _state(**kwargs) -> ChatState:
    contacts = (
        ConversationPreview("bob", "bob", "B"),
        ConversationPreview("carol", "carol", "C"),
    )
    return ChatState(current_user_id="me", contacts=contacts, **kwargs)


def _incoming(sender: str, text: str = "hi", **extra) -> dict:
    body = {"id": "m1", "senderId": sender, "receiverId": "me", "message": text, "type": "text", "timestamp": 100}
    body.update(extra)
    return body


def test_online_snapshot_replaces_presence():
    state = reduce(_state(), "online_users", [{"id": "carol", "isOnline": True}], now_ms=0)

    assert state.contact("bob").is_online is False
    assert state.contact("carol").is_online is True

    state = reduce(state, "user_online", {"userId": "bob"}, now_ms=0)
    state = reduce(state, "user_offline", {"userId": "carol"}, now_ms=0)
    assert state.contact("bob").is_online is True
    assert state.contact("carol").is_online is False


def test_receive_message_bumps_unread_unless_active():
    state = reduce(_state(), "receive_message", _incoming("bob"), now_ms=0)
    assert state.contact("bob").unread == 1
    assert state.contact("bob").last_message == "hi"
    assert state.contact("bob").last_message_time == 100

    active = reduce(_state(active_contact_id="bob"), "receive_message", _incoming("bob"), now_ms=0)
    assert active.contact("bob").unread == 0


def test_receive_message_for_someone_else_is_ignored():
    original = _state()
    state = reduce(original, "receive_message", _incoming("bob", receiverId="carol"), now_ms=0)

    assert state is original


def test_receive_attachment_uses_preview_label():
    state = reduce(_state(), "receive_message", _incoming("bob", "", type="audio", fileUrl="/x"), now_ms=0)

    assert state.contact("bob").last_message == "Voice message"


def test_message_sent_updates_preview_without_unread():
    body = {"id": "m2", "senderId": "me", "receiverId": "carol", "message": "", "type": "image", "timestamp": 7}
    state = reduce(_state(), "message_sent", body, now_ms=0)

    assert state.contact("carol").last_message == "Photo"
    assert state.contact("carol").unread == 0


def test_typing_expires_and_clears_on_message():
    state = reduce(_state(), "user_typing", {"userId": "bob", "username": "bob", "isTyping": True}, now_ms=1000)
    assert state.typing_users() == ["bob"]

    assert expire_typing(state, 1000 + TYPING_TIMEOUT_MS - 1).typing_users() == ["bob"]
    assert expire_typing(state, 1000 + TYPING_TIMEOUT_MS).typing_users() == []

    cleared = reduce(state, "receive_message", _incoming("bob"), now_ms=1500)
    assert cleared.typing_users() == []

    stopped = reduce(state, "user_typing", {"userId": "bob", "isTyping": False}, now_ms=1200)
    assert stopped.typing_users() == []


def test_select_contact_resets_unread():
    state = reduce(_state(), "receive_message", _incoming("bob"), now_ms=0)
    state = select_contact(state, "bob")

    assert state.active_contact_id == "bob"
    assert state.contact("bob").unread == 0
    assert select_contact(state, None).active_contact_id is None


def test_malformed_bodies_and_unknown_events_are_ignored():
    original = _state()

    assert reduce(original, "receive_message", "garbage", now_ms=0) is original
    assert reduce(original, "user_online", None, now_ms=0) is original
    assert reduce(original, "something_else", {}, now_ms=0) is original


def test_channel_filters_kinds_and_notifies_listeners():
    channel = EventChannel(_state(), kinds={"receive_message", "user_typing", "not_a_kind"})
    seen = []
    channel.subscribe(lambda kind, state: seen.append((kind, state.contact("bob").unread)))

    channel.dispatch({"v": 1, "t": "user_online", "body": {"userId": "bob"}}, now_ms=0)
    channel.dispatch({"v": 1, "t": "receive_message", "body": _incoming("bob")}, now_ms=0)
    channel.select("bob")

    assert seen == [("receive_message", 1)]
    assert channel.state.contact("bob").is_online is False
    assert channel.state.contact("bob").unread == 0
    assert channel.kinds == frozenset({"receive_message", "user_typing"})
