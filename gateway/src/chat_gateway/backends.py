from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .blobs import BlobStore, DiskBlobStore
from .errors import ConfigurationError
from .messages import InMemoryMessageStore, MessageStore
from .sqlite_backend import SQLiteBackend
from .sqlite_blobs import SQLiteBlobStore
from .sqlite_store import SQLiteMessageStore
from .sqlite_users import SQLiteUserDirectory
from .users import InMemoryUserDirectory, UserDirectory


logger = logging.getLogger(__name__)


@dataclass
class Backends:
    messages: MessageStore
    blobs: BlobStore
    users: UserDirectory
    backend: SQLiteBackend | None = None

    @property
    def durable(self) -> bool:
        return self.backend is not None

    def close(self) -> None:
        if self.backend is not None:
            self.backend.close()


def transient_backends(uploads_dir: str | Path) -> Backends:
    return Backends(
        messages=InMemoryMessageStore(),
        blobs=DiskBlobStore(uploads_dir),
        users=InMemoryUserDirectory(),
    )


def durable_backends(db_path: str | None) -> Backends:
    """Open the SQLite-backed stores or raise :class:`ConfigurationError`."""

    if not db_path:
        raise ConfigurationError("no database path configured")
    backend = SQLiteBackend(db_path)
    blobs = SQLiteBlobStore(backend)
    return Backends(
        messages=SQLiteMessageStore(backend, blobs),
        blobs=blobs,
        users=SQLiteUserDirectory(backend),
        backend=backend,
    )


def open_backends(db_path: str | None, uploads_dir: str | Path) -> Backends:
    """Pick durable or transient stores once, at startup."""

    try:
        backends = durable_backends(db_path)
    except ConfigurationError as exc:
        logger.warning("Durable storage unavailable (%s); running with in-memory stores", exc)
        return transient_backends(uploads_dir)
    logger.info("Durable storage ready at %s", db_path)
    return backends
