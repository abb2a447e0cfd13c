from chat_client.contacts import (
    NO_MESSAGES,
    ConversationPreview,
    build_contact_list,
    drop_leading_empty,
    preview_text,
    time_ago,
)


def _history_from(conversations):
    def fetch(user_a, user_b):
        return conversations.get(frozenset({user_a, user_b}), [])

    return fetch


def test_preview_text_by_kind():
    assert preview_text({"type": "text", "message": "hi"}) == "hi"
    assert preview_text({"message": "no type"}) == "no type"
    assert preview_text({"type": "image", "message": ""}) == "Photo"
    assert preview_text({"type": "file", "fileName": "report.pdf"}) == "report.pdf"
    assert preview_text({"type": "file"}) == "File"
    assert preview_text({"type": "audio"}) == "Voice message"


def test_contact_list_uses_last_message_and_skips_self():
    users = [
        {"id": "me", "username": "me"},
        {"id": "bob", "username": "bob", "isOnline": True},
        {"id": "carol", "username": "carol"},
    ]
    history = _history_from(
        {
            frozenset({"me", "bob"}): [
                {"senderId": "bob", "receiverId": "me", "message": "first", "timestamp": 1},
                {"senderId": "me", "receiverId": "bob", "type": "image", "timestamp": 2},
            ]
        }
    )

    contacts = build_contact_list(users, "me", history, drop_empty_limit=0)

    assert [c.contact_id for c in contacts] == ["bob", "carol"]
    bob, carol = contacts
    assert bob.last_message == "Photo"
    assert bob.last_message_time == 2
    assert bob.is_online is True
    assert bob.avatar == "B"
    assert carol.last_message == NO_MESSAGES
    assert carol.is_empty


def test_failed_history_fetch_yields_placeholder(caplog):
    def broken(user_a, user_b):
        if user_b == "bob":
            raise OSError("connection refused")
        return [{"message": "ok", "timestamp": 5}]

    users = [{"id": "bob", "username": "bob"}, {"id": "carol", "username": "carol"}]
    with caplog.at_level("WARNING", logger="chat_client.contacts"):
        contacts = build_contact_list(users, "me", broken, drop_empty_limit=0)

    assert contacts[0].last_message == NO_MESSAGES
    assert contacts[1].last_message == "ok"
    assert "History fetch failed for bob" in caplog.text


def test_empty_entries_are_dropped_up_to_limit():
    users = [{"id": f"u{i}", "username": f"user{i}"} for i in range(6)]
    users.append({"id": "talker", "username": "talker"})
    history = _history_from({frozenset({"me", "talker"}): [{"message": "yo", "timestamp": 9}]})

    contacts = build_contact_list(users, "me", history)

    assert [c.contact_id for c in contacts] == ["u4", "u5", "talker"]


def test_unknown_usernames_count_towards_limit():
    previews = [
        ConversationPreview("a", "Unknown", "U", last_message="hey", last_message_time=1),
        ConversationPreview("b", "bob", "B", last_message="hey", last_message_time=2),
        ConversationPreview("c", "", "U"),
    ]

    kept = drop_leading_empty(previews, 1)

    assert [p.contact_id for p in kept] == ["b", "c"]


def test_preview_serializes_to_wire_shape():
    preview = ConversationPreview("bob", "bob", "B", is_online=True, last_message="hi", last_message_time=3, unread=2)

    assert preview.to_dict() == {
        "id": "bob",
        "username": "bob",
        "avatar": "B",
        "isOnline": True,
        "lastMessage": "hi",
        "lastMessageTime": 3,
        "unread": 2,
    }


def test_time_ago_buckets():
    now = 10 * 24 * 3600 * 1000
    assert time_ago(None, now) == ""
    assert time_ago(now - 30_000, now) == "now"
    assert time_ago(now - 5 * 60_000, now) == "5m ago"
    assert time_ago(now - 3 * 3600_000, now) == "3h ago"
    assert time_ago(now - 2 * 24 * 3600_000, now) == "2d ago"
    assert time_ago(now + 5_000, now) == "now"
    assert "ago" not in time_ago(0, now)
