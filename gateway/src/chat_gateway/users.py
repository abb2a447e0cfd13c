from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Any, Dict, List, Protocol

from .errors import AuthenticationError, ConflictError, ValidationError
from .messages import _now_ms


PBKDF2_ITERATIONS = 120_000


def avatar_for(username: str) -> str:
    return username[:1].upper() or "U"


def new_user_id() -> str:
    return secrets.token_hex(12)


def hash_password(password: str, *, salt: bytes | None = None, iterations: int = PBKDF2_ITERATIONS) -> str:
    """Return ``pbkdf2_sha256$<iterations>$<salt hex>$<digest hex>``."""

    salt = salt or secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return f"pbkdf2_sha256${iterations}${salt.hex()}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    try:
        scheme, iterations, salt_hex, digest_hex = encoded.split("$")
    except ValueError:
        return False
    if scheme != "pbkdf2_sha256":
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), bytes.fromhex(salt_hex), int(iterations))
    return hmac.compare_digest(digest.hex(), digest_hex)


def validate_credentials(username: Any, password: Any) -> tuple[str, str]:
    if not isinstance(username, str) or not username.strip() or not isinstance(password, str) or not password:
        raise ValidationError("Username and password required")
    return username.strip(), password


@dataclass(frozen=True)
class User:
    id: str
    username: str

    @property
    def avatar(self) -> str:
        return avatar_for(self.username)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "username": self.username, "avatar": self.avatar}


class UserDirectory(Protocol):
    durable: bool

    async def register(self, username: str, password: str) -> User: ...

    async def authenticate(self, username: str, password: str) -> User: ...

    async def get(self, user_id: str) -> User | None: ...

    async def list_except(self, user_id: str | None) -> List[User]: ...

    async def count(self) -> int: ...


class InMemoryUserDirectory:
    """Account store used when no durable backend is configured."""

    durable = False

    def __init__(self) -> None:
        self._users: Dict[str, User] = {}
        self._by_name: Dict[str, str] = {}
        self._hashes: Dict[str, str] = {}
        self._created: Dict[str, int] = {}

    async def register(self, username: str, password: str) -> User:
        username, password = validate_credentials(username, password)
        if username in self._by_name:
            raise ConflictError("Username already exists")
        user = User(id=new_user_id(), username=username)
        self._users[user.id] = user
        self._by_name[username] = user.id
        self._hashes[user.id] = hash_password(password)
        self._created[user.id] = _now_ms()
        return user

    async def authenticate(self, username: str, password: str) -> User:
        username, password = validate_credentials(username, password)
        user_id = self._by_name.get(username)
        if user_id is None or not verify_password(password, self._hashes[user_id]):
            raise AuthenticationError("Invalid credentials")
        return self._users[user_id]

    async def get(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    async def list_except(self, user_id: str | None) -> List[User]:
        users = sorted(self._users.values(), key=lambda u: self._created[u.id])
        return [u for u in users if u.id != user_id]

    async def count(self) -> int:
        return len(self._users)
