import io
import json
import logging
import os
import tempfile
import unittest

from chat_gateway.server import _load_frames, configure_logging, main, simulate


def _lines(buffer: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in buffer.getvalue().splitlines()]


class TestGatewayServer(unittest.TestCase):
    def test_load_frames_accepts_array_or_lines(self):
        array_buffer = io.StringIO(json.dumps([{"t": "connect"}]))
        ndjson_buffer = io.StringIO("\n".join(['{"t": "one"}', '{"t": "two"}']))
        single_buffer = io.StringIO('{"t": "solo"}')

        self.assertEqual(list(_load_frames(array_buffer)), [{"t": "connect"}])
        self.assertEqual(list(_load_frames(ndjson_buffer)), [{"t": "one"}, {"t": "two"}])
        self.assertEqual(list(_load_frames(single_buffer)), [{"t": "solo"}])
        self.assertEqual(list(_load_frames(io.StringIO("  "))), [])

    def test_simulate_streams_presence_and_delivery(self):
        frames = [
            {"t": "user_login", "connection_id": "c1", "body": {"userId": "alice", "username": "alice"}},
            {"t": "user_login", "connection_id": "c2", "body": {"userId": "bob", "username": "bob"}},
            {
                "t": "private_message",
                "connection_id": "c1",
                "ts": 1000,
                "body": {"senderId": "alice", "receiverId": "bob", "message": "hi"},
            },
        ]
        buffer = io.StringIO()

        simulate(frames, buffer)

        events = [(line["connection_id"], line["event"]) for line in _lines(buffer)]
        self.assertEqual(
            events,
            [
                ("c1", "user_online"),
                ("c1", "online_users"),
                ("c1", "user_online"),
                ("c2", "user_online"),
                ("c2", "online_users"),
                ("c2", "receive_message"),
                ("c1", "message_sent"),
            ],
        )
        delivered = _lines(buffer)[5]["body"]
        self.assertEqual(delivered["id"], "1000")
        self.assertEqual(delivered["timestamp"], 1000)

    def test_simulate_history_and_clear(self):
        frames = [
            {"t": "connect", "connection_id": "c1"},
            {
                "t": "private_message",
                "connection_id": "c1",
                "ts": 2,
                "body": {"senderId": "alice", "receiverId": "bob", "message": "second"},
            },
            {
                "t": "private_message",
                "connection_id": "c1",
                "ts": 1,
                "body": {"senderId": "bob", "receiverId": "alice", "message": "first"},
            },
            {"t": "history", "body": {"userA": "bob", "userB": "alice"}},
            {"t": "clear", "body": {"userA": "alice", "userB": "bob"}},
            {"t": "history", "body": {"userA": "alice", "userB": "bob"}},
        ]
        buffer = io.StringIO()

        simulate(frames, buffer)

        lines = [line for line in _lines(buffer) if line["t"] != "event"]
        self.assertEqual([m["message"] for m in lines[0]["messages"]], ["first", "second"])
        self.assertEqual(lines[1], {"t": "cleared", "deletedCount": 2})
        self.assertEqual(lines[2], {"t": "history", "messages": []})

    def test_simulate_reports_dropped_messages(self):
        frames = [
            {
                "t": "private_message",
                "connection_id": "c1",
                "body": {"senderId": "alice", "receiverId": "bob", "type": "image"},
            }
        ]
        buffer = io.StringIO()

        simulate(frames, buffer)

        (line,) = _lines(buffer)
        self.assertEqual(line["t"], "dropped")
        self.assertEqual(line["connection_id"], "c1")

    def test_simulate_disconnect_emits_offline_once(self):
        frames = [
            {"t": "connect", "connection_id": "watch"},
            {"t": "user_login", "connection_id": "c1", "body": {"userId": "bob"}},
            {"t": "user_login", "connection_id": "c2", "body": {"userId": "bob"}},
            {"t": "disconnect", "connection_id": "c1"},
            {"t": "disconnect", "connection_id": "c2"},
        ]
        buffer = io.StringIO()

        simulate(frames, buffer)

        watched = [line["event"] for line in _lines(buffer) if line["connection_id"] == "watch"]
        self.assertEqual(watched, ["user_online", "user_offline"])

    def test_simulate_rejects_unknown_frames(self):
        with self.assertRaises(ValueError):
            simulate([{"t": "bogus"}], io.StringIO())

    def test_main_simulate_reads_file(self):
        frames = [
            {"t": "user_login", "connection_id": "c1", "body": {"userId": "alice"}},
            {"t": "typing", "connection_id": "c1", "body": {"senderId": "bob", "receiverId": "alice", "isTyping": True}},
        ]
        with tempfile.NamedTemporaryFile("w", suffix=".json", delete=False) as handle:
            json.dump(frames, handle)
            path = handle.name
        self.addCleanup(os.unlink, path)

        buffer = io.StringIO()
        exit_code = main(["simulate", "-f", path], output=buffer)

        self.assertEqual(exit_code, 0)
        self.assertEqual(_lines(buffer)[-1]["event"], "user_typing")
        self.assertEqual(_lines(buffer)[-1]["body"]["isTyping"], True)

    def test_configure_logging_uses_shared_format(self):
        stream = io.StringIO()
        root = logging.getLogger()
        saved, saved_level = root.handlers[:], root.level
        root.handlers = []
        try:
            configure_logging("debug", stream)
            logging.getLogger("chat_gateway.test").info("hello")
        finally:
            root.handlers = saved
            root.setLevel(saved_level)

        self.assertRegex(stream.getvalue(), r"\[INFO\] chat_gateway\.test: hello")


if __name__ == "__main__":
    unittest.main()
