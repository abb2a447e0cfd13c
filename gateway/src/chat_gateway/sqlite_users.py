from __future__ import annotations

import asyncio
import sqlite3
from typing import List

from .errors import AuthenticationError, ConflictError, StorageError
from .messages import _now_ms
from .sqlite_backend import SQLiteBackend
from .users import User, hash_password, new_user_id, validate_credentials, verify_password


class SQLiteUserDirectory:
    """Durable account store backed by SQLite."""

    durable = True

    def __init__(self, backend: SQLiteBackend) -> None:
        self._backend = backend

    async def register(self, username: str, password: str) -> User:
        username, password = validate_credentials(username, password)
        user = User(id=new_user_id(), username=username)
        password_hash = hash_password(password)
        try:
            created = await asyncio.to_thread(self._insert, user, password_hash)
        except sqlite3.Error as exc:
            raise StorageError(f"Registration failed: {exc}") from exc
        if not created:
            raise ConflictError("Username already exists")
        return user

    def _insert(self, user: User, password_hash: str) -> bool:
        with self._backend.lock:
            try:
                self._backend.connection.execute(
                    "INSERT INTO users (user_id, username, password_hash, created_at_ms) VALUES (?, ?, ?, ?)",
                    (user.id, user.username, password_hash, _now_ms()),
                )
            except sqlite3.IntegrityError:
                return False
        return True

    async def authenticate(self, username: str, password: str) -> User:
        username, password = validate_credentials(username, password)
        try:
            row = await asyncio.to_thread(
                self._fetchone, "SELECT user_id, username, password_hash FROM users WHERE username=?", (username,)
            )
        except sqlite3.Error as exc:
            raise StorageError(f"Login failed: {exc}") from exc
        if row is None or not verify_password(password, row[2]):
            raise AuthenticationError("Invalid credentials")
        return User(id=row[0], username=row[1])

    async def get(self, user_id: str) -> User | None:
        try:
            row = await asyncio.to_thread(
                self._fetchone, "SELECT user_id, username FROM users WHERE user_id=?", (user_id,)
            )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to fetch user: {exc}") from exc
        if row is None:
            return None
        return User(id=row[0], username=row[1])

    async def list_except(self, user_id: str | None) -> List[User]:
        try:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT user_id, username FROM users WHERE user_id IS NOT ? ORDER BY created_at_ms ASC, username ASC",
                (user_id,),
            )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to fetch users: {exc}") from exc
        return [User(id=row[0], username=row[1]) for row in rows]

    async def count(self) -> int:
        try:
            row = await asyncio.to_thread(self._fetchone, "SELECT COUNT(*) FROM users", ())
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to count users: {exc}") from exc
        return int(row[0])

    def _fetchone(self, query: str, params: tuple):
        with self._backend.lock:
            return self._backend.connection.execute(query, params).fetchone()

    def _fetchall(self, query: str, params: tuple):
        with self._backend.lock:
            return self._backend.connection.execute(query, params).fetchall()
