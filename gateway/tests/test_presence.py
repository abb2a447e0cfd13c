import unittest

from chat_gateway.hub import ConnectionHub
from chat_gateway.presence import PresenceRegistry


class PresenceRegistryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.hub = ConnectionHub()
        self.presence = PresenceRegistry(self.hub)
        self.received: dict[str, list] = {}
        self._attach("watcher")

    def _attach(self, connection_id: str) -> None:
        inbox = self.received.setdefault(connection_id, [])
        self.hub.attach(connection_id, inbox.append)

    def _names(self, connection_id: str, name: str) -> list:
        return [event.body for event in self.received[connection_id] if event.name == name]

    def test_multi_connection_emits_single_online_and_offline(self):
        self._attach("c1")
        self._attach("c2")

        self.presence.connect("c1", "alice", "alice", "A")
        self.presence.connect("c2", "alice", "alice", "A")
        self.assertEqual(len(self._names("watcher", "user_online")), 1)

        self.assertFalse(self.presence.disconnect("c1"))
        self.assertEqual(self._names("watcher", "user_offline"), [])
        self.assertTrue(self.presence.is_online("alice"))

        self.assertTrue(self.presence.disconnect("c2"))
        self.assertEqual(self._names("watcher", "user_offline"), [{"userId": "alice"}])
        self.assertFalse(self.presence.is_online("alice"))
        self.assertEqual(self.presence.connections_for("alice"), frozenset())

    def test_online_event_carries_identity(self):
        self._attach("c1")
        self.presence.connect("c1", "alice", "alice", None)

        online = self._names("watcher", "user_online")
        self.assertEqual(online, [{"userId": "alice", "username": "alice", "avatar": "A"}])

    def test_snapshot_is_unicast_to_new_connection_only(self):
        self._attach("c1")
        self._attach("c2")
        self.presence.connect("c1", "alice", "alice", "A")
        snapshot = self.presence.connect("c2", "bob", "bob", "B")

        self.assertEqual(snapshot, [{"id": "alice", "isOnline": True}, {"id": "bob", "isOnline": True}])
        self.assertEqual(self._names("c2", "online_users"), [snapshot])
        self.assertEqual(len(self._names("c1", "online_users")), 1)
        self.assertEqual(self._names("watcher", "online_users"), [])

    def test_reregistering_same_connection_does_not_duplicate(self):
        self._attach("c1")
        self.presence.connect("c1", "alice", "alice", "A")
        self.presence.connect("c1", "alice", "alice2", "Z")

        self.assertEqual(self.presence.connections_for("alice"), frozenset({"c1"}))
        self.assertEqual(len(self._names("watcher", "user_online")), 1)
        self.assertEqual(self.presence.identity("c1").username, "alice2")

        self.assertTrue(self.presence.disconnect("c1"))
        self.assertEqual(len(self._names("watcher", "user_offline")), 1)

    def test_rebinding_connection_to_other_user_moves_presence(self):
        self._attach("c1")
        self.presence.connect("c1", "alice", "alice", "A")
        self.presence.connect("c1", "bob", "bob", "B")

        self.assertFalse(self.presence.is_online("alice"))
        self.assertTrue(self.presence.is_online("bob"))
        self.assertEqual(self._names("watcher", "user_offline"), [{"userId": "alice"}])

    def test_disconnect_of_unknown_connection_is_noop(self):
        self.assertFalse(self.presence.disconnect("never-logged-in"))
        self.assertEqual(self.received["watcher"], [])

    def test_close_drops_state_silently(self):
        self._attach("c1")
        self.presence.connect("c1", "alice", "alice", "A")
        self.received["watcher"].clear()

        self.presence.close()

        self.assertEqual(self.presence.online_user_ids(), [])
        self.assertEqual(self.received["watcher"], [])


if __name__ == "__main__":
    unittest.main()
