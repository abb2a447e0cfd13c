from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping


DEFAULT_ALLOWED_ORIGINS = ("http://localhost:5173",)
MAX_UPLOAD_BYTES = 10 * 1024 * 1024


def _split_origins(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return DEFAULT_ALLOWED_ORIGINS
    origins = tuple(origin.strip() for origin in raw.split(",") if origin.strip())
    return origins or DEFAULT_ALLOWED_ORIGINS


@dataclass
class TransportConfig:
    ping_interval_s: int = 30
    ping_miss_limit: int = 2
    max_msg_size: int = 1_048_576
    outbound_queue_size: int = 1000


@dataclass
class GatewayConfig:
    host: str = "127.0.0.1"
    port: int = 5000
    db_path: str | None = None
    uploads_dir: str = "uploads"
    allowed_origins: tuple[str, ...] = DEFAULT_ALLOWED_ORIGINS
    max_upload_bytes: int = MAX_UPLOAD_BYTES
    log_level: str = "INFO"
    transport: TransportConfig = field(default_factory=TransportConfig)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "GatewayConfig":
        """Build a config from ``CHAT_*``/``HOST``/``PORT`` variables.

        Unset or empty variables keep the dataclass defaults. ``CHAT_DB_PATH``
        left empty selects the transient in-memory backends.
        """

        env = os.environ if environ is None else environ
        config = cls()
        if env.get("HOST"):
            config.host = env["HOST"]
        if env.get("PORT"):
            config.port = int(env["PORT"])
        config.db_path = env.get("CHAT_DB_PATH") or None
        if env.get("CHAT_UPLOADS_DIR"):
            config.uploads_dir = env["CHAT_UPLOADS_DIR"]
        config.allowed_origins = _split_origins(env.get("CHAT_ALLOWED_ORIGINS"))
        if env.get("CHAT_LOG_LEVEL"):
            config.log_level = env["CHAT_LOG_LEVEL"].upper()
        if env.get("CHAT_PING_INTERVAL"):
            config.transport.ping_interval_s = int(env["CHAT_PING_INTERVAL"])
        return config
