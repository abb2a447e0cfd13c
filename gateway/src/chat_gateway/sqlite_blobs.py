from __future__ import annotations

import asyncio
import sqlite3

from .blobs import DEFAULT_CONTENT_TYPE, Blob, BlobInfo, is_valid_file_id, new_file_id
from .errors import NotFoundError, StorageError
from .messages import _now_ms
from .sqlite_backend import SQLiteBackend


class SQLiteBlobStore:
    """Durable attachment storage in the ``blobs`` table."""

    durable = True

    def __init__(self, backend: SQLiteBackend) -> None:
        self._backend = backend

    async def put(self, data: bytes, filename: str, content_type: str | None) -> BlobInfo:
        info = BlobInfo(
            file_id=new_file_id(),
            filename=filename,
            content_type=content_type or DEFAULT_CONTENT_TYPE,
            size=len(data),
        )
        try:
            await asyncio.to_thread(self._insert, info, data)
        except sqlite3.Error as exc:
            raise StorageError(f"failed to store upload: {exc}") from exc
        return info

    def _insert(self, info: BlobInfo, data: bytes) -> None:
        with self._backend.lock:
            self._backend.connection.execute(
                """
                INSERT INTO blobs (file_id, filename, content_type, size, data, created_at_ms)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (info.file_id, info.filename, info.content_type, info.size, sqlite3.Binary(data), _now_ms()),
            )

    async def get(self, file_id: str) -> Blob:
        if not is_valid_file_id(file_id):
            raise NotFoundError("File not found")
        try:
            row = await asyncio.to_thread(self._select, file_id)
        except sqlite3.Error as exc:
            raise StorageError(f"failed to read upload: {exc}") from exc
        if row is None:
            raise NotFoundError("File not found")
        info = BlobInfo(file_id=file_id, filename=row[0], content_type=row[1], size=row[2])
        return Blob(info=info, data=bytes(row[3]))

    def _select(self, file_id: str):
        with self._backend.lock:
            return self._backend.connection.execute(
                "SELECT filename, content_type, size, data FROM blobs WHERE file_id=?",
                (file_id,),
            ).fetchone()

    async def delete(self, file_id: str) -> bool:
        try:
            return await asyncio.to_thread(self._delete, file_id)
        except sqlite3.Error as exc:
            raise StorageError(f"failed to delete upload: {exc}") from exc

    def _delete(self, file_id: str) -> bool:
        with self._backend.lock:
            cursor = self._backend.connection.execute("DELETE FROM blobs WHERE file_id=?", (file_id,))
            return cursor.rowcount > 0
