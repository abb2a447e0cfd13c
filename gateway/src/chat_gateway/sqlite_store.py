from __future__ import annotations

import asyncio
import logging
import secrets
import sqlite3

from .blobs import BlobStore
from .errors import StorageError
from .messages import KIND_TEXT, Message
from .sqlite_backend import SQLiteBackend


logger = logging.getLogger(__name__)

_PAIR_CLAUSE = "((sender_id=? AND receiver_id=?) OR (sender_id=? AND receiver_id=?))"
_COLUMNS = "msg_id, sender_id, receiver_id, body, kind, ts_ms, file_id, file_url, file_name"


def _row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        id=row[0],
        sender_id=row[1],
        receiver_id=row[2],
        body=row[3],
        kind=row[4],
        timestamp_ms=row[5],
        file_id=row[6],
        file_url=row[7],
        file_name=row[8],
    )


class SQLiteMessageStore:
    """Durable message store backed by SQLite.

    Every call runs in a worker thread under the backend lock so the event
    loop is free while SQLite works. Backend failures surface as
    :class:`StorageError`.
    """

    durable = True

    def __init__(self, backend: SQLiteBackend, blobs: BlobStore | None = None) -> None:
        self._backend = backend
        self._blobs = blobs

    async def append(self, message: Message) -> Message:
        stored = message.with_id(secrets.token_hex(12))
        try:
            await asyncio.to_thread(self._insert, stored)
        except sqlite3.Error as exc:
            raise StorageError(f"failed to save message: {exc}") from exc
        return stored

    def _insert(self, message: Message) -> None:
        with self._backend.lock:
            self._backend.connection.execute(
                f"INSERT INTO messages ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    message.id,
                    message.sender_id,
                    message.receiver_id,
                    message.body,
                    message.kind,
                    message.timestamp_ms,
                    message.file_id,
                    message.file_url,
                    message.file_name,
                ),
            )

    async def history(self, user_a: str, user_b: str) -> list[Message]:
        try:
            rows = await asyncio.to_thread(self._select_pair, user_a, user_b)
        except sqlite3.Error as exc:
            raise StorageError(f"failed to fetch messages: {exc}") from exc
        return [_row_to_message(row) for row in rows]

    def _select_pair(self, user_a: str, user_b: str) -> list[sqlite3.Row]:
        with self._backend.lock:
            return self._backend.connection.execute(
                f"SELECT {_COLUMNS} FROM messages WHERE {_PAIR_CLAUSE} ORDER BY ts_ms ASC, seq ASC",
                (user_a, user_b, user_b, user_a),
            ).fetchall()

    async def attachments(self, user_a: str, user_b: str) -> list[Message]:
        history = await self.history(user_a, user_b)
        return [m for m in reversed(history) if m.kind != KIND_TEXT]

    async def clear(self, user_a: str, user_b: str) -> int:
        """Delete the conversation, then the attachments of exactly the removed rows."""

        try:
            deleted, file_ids = await asyncio.to_thread(self._delete_pair, user_a, user_b)
        except sqlite3.Error as exc:
            raise StorageError(f"failed to delete messages: {exc}") from exc

        if self._blobs is not None:
            for file_id in file_ids:
                try:
                    await self._blobs.delete(file_id)
                except Exception as exc:
                    logger.warning("Failed to delete attachment %s: %s", file_id, exc)
        return deleted

    def _delete_pair(self, user_a: str, user_b: str) -> tuple[int, list[str]]:
        params = (user_a, user_b, user_b, user_a)
        conn = self._backend.connection
        with self._backend.lock:
            cursor = conn.cursor()
            try:
                cursor.execute("BEGIN IMMEDIATE")
                rows = cursor.execute(
                    f"SELECT DISTINCT file_id FROM messages WHERE {_PAIR_CLAUSE} AND file_id IS NOT NULL",
                    params,
                ).fetchall()
                cursor.execute(f"DELETE FROM messages WHERE {_PAIR_CLAUSE}", params)
                deleted = cursor.rowcount
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
            finally:
                cursor.close()
        return deleted, [row[0] for row in rows]
