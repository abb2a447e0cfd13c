from __future__ import annotations

import asyncio
import logging
import secrets
from typing import Any, Awaitable, Callable, Iterable, Union

from aiohttp import WSMsgType, web

from .backends import Backends, open_backends
from .config import GatewayConfig
from .delivery import DeliveryRouter, TypingNotifier
from .errors import AuthenticationError, NotFoundError, StorageError, ValidationError
from .hub import ConnectionHub, Event
from .messages import attachment_from_fields
from .presence import PresenceRegistry


logger = logging.getLogger(__name__)

UPLOAD_OVERHEAD_BYTES = 64 * 1024


class Runtime:
    def __init__(
        self,
        *,
        config: GatewayConfig,
        backends: Backends,
        hub: ConnectionHub,
        presence: PresenceRegistry,
        router: DeliveryRouter,
        typing: TypingNotifier,
    ) -> None:
        self.config = config
        self.backends = backends
        self.hub = hub
        self.presence = presence
        self.router = router
        self.typing = typing

    @property
    def messages(self):
        return self.backends.messages

    @property
    def blobs(self):
        return self.backends.blobs

    @property
    def users(self):
        return self.backends.users


RUNTIME_KEY = web.AppKey("runtime", Runtime)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"error": message}, status=status)


async def _read_json(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as exc:
        raise ValidationError("malformed json") from exc
    if not isinstance(body, dict):
        raise ValidationError("malformed json")
    return body


def _cors_middleware(allowed_origins: Iterable[str]):
    allowed = frozenset(allowed_origins)

    @web.middleware
    async def cors(request: web.Request, handler: Handler) -> web.StreamResponse:
        origin = request.headers.get("Origin")
        if request.method == "OPTIONS" and "Access-Control-Request-Method" in request.headers:
            response: web.StreamResponse = web.Response(status=204)
        else:
            response = await handler(request)
        if origin and origin in allowed and not response.prepared:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Vary"] = "Origin"
            if request.method == "OPTIONS":
                response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
                response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
        return response

    return cors


async def handle_health(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    try:
        users = await runtime.users.count()
    except StorageError:
        users = 0
    return web.json_response(
        {
            "status": "OK",
            "users": users,
            "online": runtime.presence.online_count(),
            "durable": runtime.backends.durable,
        }
    )


async def handle_register(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    try:
        body = await _read_json(request)
        user = await runtime.users.register(body.get("username"), body.get("password"))
    except ValidationError as exc:
        return _error(str(exc), 400)
    except StorageError as exc:
        return _error(str(exc), 500)
    logger.info("Registered %s (%s)", user.username, user.id)
    return web.json_response({"user": user.to_dict()})


async def handle_login(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    try:
        body = await _read_json(request)
        user = await runtime.users.authenticate(body.get("username"), body.get("password"))
    except ValidationError as exc:
        return _error(str(exc), 400)
    except AuthenticationError as exc:
        return _error(str(exc), 401)
    except StorageError as exc:
        return _error(str(exc), 500)
    return web.json_response({"user": user.to_dict()})


async def handle_users(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    current_user_id = request.query.get("currentUserId") or None
    try:
        users = await runtime.users.list_except(current_user_id)
    except StorageError as exc:
        return _error(f"Failed to fetch users: {exc}", 500)
    return web.json_response(
        [dict(user.to_dict(), isOnline=runtime.presence.is_online(user.id)) for user in users]
    )


async def handle_history(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    u1 = request.match_info["u1"]
    u2 = request.match_info["u2"]
    try:
        messages = await runtime.messages.history(u1, u2)
    except StorageError as exc:
        logger.error("History fetch failed for %s/%s: %s", u1, u2, exc)
        return _error(f"Failed to fetch messages: {exc}", 500)
    return web.json_response([message.to_dict() for message in messages])


async def handle_attachments(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    try:
        messages = await runtime.messages.attachments(request.match_info["u1"], request.match_info["u2"])
    except StorageError as exc:
        return _error(f"Failed to fetch attachments: {exc}", 500)
    return web.json_response([message.to_dict() for message in messages])


async def handle_clear(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    u1 = request.match_info["u1"]
    u2 = request.match_info["u2"]
    try:
        deleted = await runtime.messages.clear(u1, u2)
    except StorageError as exc:
        logger.error("Clearing %s/%s failed: %s", u1, u2, exc)
        return _error(f"Failed to delete messages: {exc}", 500)
    logger.info("Cleared %d messages between %s and %s", deleted, u1, u2)
    return web.json_response({"deletedCount": deleted})


async def handle_upload(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    try:
        form = await request.post()
    except ValueError:
        return _error("No file uploaded", 400)
    field = form.get("file")
    if not isinstance(field, web.FileField):
        return _error("No file uploaded", 400)

    data = await asyncio.to_thread(field.file.read)
    if len(data) > runtime.config.max_upload_bytes:
        return _error("File too large", 413)
    try:
        info = await runtime.blobs.put(data, field.filename or "upload", field.content_type)
    except StorageError as exc:
        logger.error("Upload failed: %s", exc)
        return _error("Upload failed", 500)
    return web.json_response(info.to_dict())


async def handle_file(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    try:
        blob = await runtime.blobs.get(request.match_info["file_id"])
    except NotFoundError:
        return _error("File not found", 404)
    except StorageError as exc:
        logger.error("File stream failed: %s", exc)
        return _error("Failed to stream file", 500)
    filename = blob.info.filename.replace('"', "")
    return web.Response(
        body=blob.data,
        headers={
            "Content-Type": blob.info.content_type,
            "Content-Disposition": f'inline; filename="{filename}"',
        },
    )


def create_app(config: GatewayConfig | None = None, *, backends: Backends | None = None) -> web.Application:
    config = config or GatewayConfig()
    if backends is None:
        backends = open_backends(config.db_path, config.uploads_dir)

    hub = ConnectionHub()
    presence = PresenceRegistry(hub)
    runtime = Runtime(
        config=config,
        backends=backends,
        hub=hub,
        presence=presence,
        router=DeliveryRouter(presence, hub, backends.messages),
        typing=TypingNotifier(presence, hub),
    )
    app = web.Application(
        middlewares=[_cors_middleware(config.allowed_origins)],
        client_max_size=config.max_upload_bytes + UPLOAD_OVERHEAD_BYTES,
    )
    app[RUNTIME_KEY] = runtime
    app.router.add_get("/health", handle_health)
    app.router.add_post("/api/register", handle_register)
    app.router.add_post("/api/login", handle_login)
    app.router.add_get("/api/users", handle_users)
    app.router.add_get("/api/messages/{u1}/{u2}", handle_history)
    app.router.add_get("/api/messages/{u1}/{u2}/attachments", handle_attachments)
    app.router.add_delete("/api/messages/{u1}/{u2}", handle_clear)
    app.router.add_post("/api/upload", handle_upload)
    app.router.add_get("/api/files/{file_id}", handle_file)
    app.router.add_get("/ws", websocket_handler)

    async def shutdown(_: web.Application) -> None:
        presence.close()
        backends.close()

    app.on_cleanup.append(shutdown)
    return app


async def websocket_handler(request: web.Request) -> web.WebSocketResponse:
    runtime = request.app[RUNTIME_KEY]
    transport = runtime.config.transport

    ws = web.WebSocketResponse(max_msg_size=transport.max_msg_size)
    await ws.prepare(request)

    connection_id = f"c_{secrets.token_urlsafe(12)}"
    last_activity = asyncio.get_running_loop().time()
    missed_heartbeats = 0
    outbound: asyncio.Queue[Union[Event, dict, None]] = asyncio.Queue(maxsize=transport.outbound_queue_size)
    closed = False

    async def close_with_error(message: str) -> None:
        nonlocal closed
        if closed:
            return
        closed = True
        await ws.close(code=1011, message=message.encode("utf-8"))

    def mark_activity() -> None:
        nonlocal last_activity, missed_heartbeats
        last_activity = asyncio.get_running_loop().time()
        missed_heartbeats = 0

    def enqueue_event(event: Event | dict) -> None:
        try:
            outbound.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Outbound queue full for %s; closing", connection_id)
            asyncio.create_task(close_with_error("backpressure"))

    async def writer() -> None:
        try:
            while True:
                event = await outbound.get()
                if event is None:
                    break
                frame = event.to_frame() if isinstance(event, Event) else event
                await ws.send_json(frame)
        except (asyncio.CancelledError, ConnectionResetError):
            return

    async def heartbeat() -> None:
        nonlocal missed_heartbeats
        try:
            while True:
                await asyncio.sleep(transport.ping_interval_s)
                if ws.closed:
                    return
                now = asyncio.get_running_loop().time()
                if now - last_activity >= transport.ping_interval_s:
                    enqueue_event({"v": 1, "t": "ping"})
                    missed_heartbeats += 1
                    if missed_heartbeats > transport.ping_miss_limit:
                        await ws.close(code=1001, message=b"heartbeat timeout")
                        return
        except asyncio.CancelledError:
            return

    runtime.hub.attach(connection_id, enqueue_event)
    writer_task = asyncio.create_task(writer())
    heartbeat_task = asyncio.create_task(heartbeat())
    logger.debug("Connected: %s", connection_id)

    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                try:
                    frame = msg.json()
                except ValueError:
                    logger.debug("Dropping malformed frame on %s", connection_id)
                    continue
                if not isinstance(frame, dict) or frame.get("v") != 1:
                    logger.debug("Dropping unsupported frame on %s", connection_id)
                    continue
                mark_activity()
                body = frame.get("body") or {}
                if not isinstance(body, dict):
                    continue
                await _dispatch(runtime, connection_id, frame.get("t"), body, enqueue_event)
            elif msg.type in {WSMsgType.CLOSE, WSMsgType.CLOSED, WSMsgType.ERROR}:
                break
            else:
                await ws.close(code=1003, message=b"unsupported frame type")
                break
    finally:
        heartbeat_task.cancel()
        runtime.presence.disconnect(connection_id)
        runtime.hub.detach(connection_id)
        writer_task.cancel()
        await asyncio.gather(heartbeat_task, writer_task, return_exceptions=True)
        logger.debug("Disconnected: %s", connection_id)

    return ws


async def _dispatch(
    runtime: Runtime,
    connection_id: str,
    frame_type: Any,
    body: dict[str, Any],
    reply: Callable[[dict], None],
) -> None:
    """Handle one client frame. Invalid frames are logged and dropped."""

    if frame_type == "ping":
        reply({"v": 1, "t": "pong"})
    elif frame_type == "pong":
        return
    elif frame_type == "user_login":
        user_id = body.get("userId")
        if not isinstance(user_id, str) or not user_id:
            logger.debug("user_login without userId on %s", connection_id)
            return
        username = body.get("username")
        avatar = body.get("avatar")
        runtime.presence.connect(
            connection_id,
            user_id,
            username if isinstance(username, str) else None,
            avatar if isinstance(avatar, str) else None,
        )
    elif frame_type == "private_message":
        identity = runtime.presence.identity(connection_id)
        sender_id = body.get("senderId") or (identity.user_id if identity else None)
        if identity is not None and sender_id != identity.user_id:
            logger.warning("Connection %s tried to send as %s", connection_id, sender_id)
            return
        try:
            await runtime.router.send(
                connection_id,
                sender_id,
                body.get("receiverId"),
                body.get("message"),
                body.get("type"),
                attachment_from_fields(body),
                client_id=body.get("id"),
            )
        except ValidationError as exc:
            logger.info("Dropping private_message on %s: %s", connection_id, exc)
    elif frame_type == "typing":
        identity = runtime.presence.identity(connection_id)
        sender_id = body.get("senderId") or (identity.user_id if identity else None)
        if identity is not None and sender_id != identity.user_id:
            logger.warning("Connection %s tried to type as %s", connection_id, sender_id)
            return
        receiver_id = body.get("receiverId")
        if not isinstance(sender_id, str) or not isinstance(receiver_id, str):
            return
        username = identity.username if identity else None
        runtime.typing.notify(sender_id, receiver_id, username, bool(body.get("isTyping")))
    else:
        logger.debug("Unknown frame type %r on %s", frame_type, connection_id)
