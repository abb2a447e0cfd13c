"""Chat gateway CLI: run the aiohttp server or replay frames through the core."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, Iterable, TextIO

from aiohttp import web

from .config import GatewayConfig
from .delivery import DeliveryRouter, TypingNotifier
from .errors import ValidationError
from .hub import ConnectionHub, Event
from .messages import InMemoryMessageStore, _now_ms, attachment_from_fields
from .presence import PresenceRegistry
from .ws_transport import create_app


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO", stream: TextIO | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        stream=stream or sys.stdout,
    )


async def _simulate(frames: Iterable[dict], output: TextIO) -> None:
    clock = {"now": _now_ms()}
    hub = ConnectionHub()
    presence = PresenceRegistry(hub)
    store = InMemoryMessageStore()
    router = DeliveryRouter(presence, hub, store, now_func=lambda: clock["now"])
    typing = TypingNotifier(presence, hub)

    def write(message: Dict[str, Any]) -> None:
        output.write(json.dumps(message) + "\n")

    def ensure_attached(connection_id: str) -> None:
        if hub.is_attached(connection_id):
            return

        def _callback(event: Event, connection: str = connection_id) -> None:
            write({"t": "event", "connection_id": connection, "event": event.name, "body": event.body})

        hub.attach(connection_id, _callback)

    for frame in frames:
        frame_type = frame.get("t")
        body = frame.get("body") or {}
        connection_id = frame.get("connection_id")
        if isinstance(frame.get("ts"), int):
            clock["now"] = frame["ts"]

        if frame_type == "connect":
            ensure_attached(connection_id)
        elif frame_type == "user_login":
            ensure_attached(connection_id)
            presence.connect(connection_id, body["userId"], body.get("username"), body.get("avatar"))
        elif frame_type == "disconnect":
            presence.disconnect(connection_id)
            hub.detach(connection_id)
        elif frame_type == "private_message":
            try:
                await router.send(
                    connection_id,
                    body.get("senderId"),
                    body.get("receiverId"),
                    body.get("message"),
                    body.get("type"),
                    attachment_from_fields(body),
                    client_id=body.get("id"),
                )
            except ValidationError as exc:
                write({"t": "dropped", "connection_id": connection_id, "reason": str(exc)})
        elif frame_type == "typing":
            identity = presence.identity(connection_id) if connection_id else None
            typing.notify(
                body["senderId"],
                body["receiverId"],
                identity.username if identity else None,
                bool(body.get("isTyping")),
            )
        elif frame_type == "history":
            messages = await store.history(body["userA"], body["userB"])
            write({"t": "history", "messages": [m.to_dict() for m in messages]})
        elif frame_type == "clear":
            deleted = await store.clear(body["userA"], body["userB"])
            write({"t": "cleared", "deletedCount": deleted})
        else:
            raise ValueError(f"unsupported frame type: {frame_type}")


def simulate(frames: Iterable[dict], output: TextIO) -> None:
    """Process JSON frames through presence, delivery and the in-memory store.

    Every event pushed to a connection is written to ``output`` as one JSON
    line, so transcripts can be compared without a live transport.
    """

    asyncio.run(_simulate(frames, output))


def _load_frames(handle: TextIO) -> Iterable[dict]:
    content = handle.read()
    if not content.strip():
        return []

    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        parsed = None

    if parsed is None:
        frames: list[dict] = []
        for line in content.splitlines():
            if line.strip():
                frames.append(json.loads(line))
        return frames

    if isinstance(parsed, list):
        return parsed
    return [parsed]


def _run_simulation(args: argparse.Namespace, output: TextIO) -> int:
    frames = _load_frames(args.file or sys.stdin)
    simulate(frames, output)
    return 0


def _run_serve(args: argparse.Namespace) -> int:
    config = GatewayConfig.from_env()
    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.db is not None:
        config.db_path = args.db
    if args.uploads_dir is not None:
        config.uploads_dir = args.uploads_dir
    if args.ping_interval is not None:
        config.transport.ping_interval_s = args.ping_interval
    if args.log_level is not None:
        config.log_level = args.log_level.upper()

    configure_logging(config.log_level)
    app = create_app(config)
    web.run_app(app, host=config.host, port=config.port)
    return 0


def main(argv: list[str] | None = None, output: TextIO | None = None) -> int:
    """Entry point for CLI commands."""

    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="1:1 chat gateway")
    subparsers = parser.add_subparsers(dest="command", required=True)

    simulate_parser = subparsers.add_parser("simulate", help="Replay chat frames through the core")
    simulate_parser.add_argument(
        "-f",
        "--file",
        type=argparse.FileType("r"),
        default=None,
        help="Path to JSON frames file; defaults to stdin",
    )

    serve_parser = subparsers.add_parser("serve", help="Run the aiohttp chat server")
    serve_parser.add_argument("--host", default=None, help="Host to bind (env HOST)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind (env PORT)")
    serve_parser.add_argument(
        "--ping-interval",
        type=int,
        default=None,
        help="Seconds between heartbeat pings",
    )
    serve_parser.add_argument("--db", type=str, default=None, help="SQLite database path (env CHAT_DB_PATH)")
    serve_parser.add_argument("--uploads-dir", type=str, default=None, help="Upload directory for in-memory mode")
    serve_parser.add_argument("--log-level", type=str, default=None, help="Logging level (env CHAT_LOG_LEVEL)")

    args = parser.parse_args(argv)

    if args.command == "simulate":
        return _run_simulation(args, output or sys.stdout)
    return _run_serve(args)


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
