from __future__ import annotations

import time
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Protocol

from .errors import ValidationError


KIND_TEXT = "text"
KIND_IMAGE = "image"
KIND_FILE = "file"
KIND_AUDIO = "audio"
MESSAGE_KINDS = frozenset({KIND_TEXT, KIND_IMAGE, KIND_FILE, KIND_AUDIO})


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class AttachmentRef:
    file_id: str | None
    url: str
    filename: str | None = None


@dataclass(frozen=True)
class Message:
    """An immutable 1:1 chat message."""

    id: str
    sender_id: str
    receiver_id: str
    body: str
    kind: str
    timestamp_ms: int
    file_id: str | None = None
    file_url: str | None = None
    file_name: str | None = None

    @property
    def attachment(self) -> AttachmentRef | None:
        if self.file_url is None:
            return None
        return AttachmentRef(file_id=self.file_id, url=self.file_url, filename=self.file_name)

    def involves(self, user_a: str, user_b: str) -> bool:
        """True when the message belongs to the unordered pair ``{user_a, user_b}``."""

        return (self.sender_id == user_a and self.receiver_id == user_b) or (
            self.sender_id == user_b and self.receiver_id == user_a
        )

    def with_id(self, message_id: str) -> "Message":
        return replace(self, id=message_id)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "senderId": self.sender_id,
            "receiverId": self.receiver_id,
            "message": self.body,
            "type": self.kind,
            "timestamp": self.timestamp_ms,
        }
        if self.file_id is not None:
            data["fileId"] = self.file_id
        if self.file_url is not None:
            data["fileUrl"] = self.file_url
        if self.file_name is not None:
            data["fileName"] = self.file_name
        return data


def build_message(
    *,
    message_id: str,
    sender_id: Any,
    receiver_id: Any,
    body: Any,
    kind: Any,
    attachment: AttachmentRef | None,
    timestamp_ms: int,
) -> Message:
    """Validate raw send fields and build a :class:`Message`.

    ``kind`` defaults to text. Any non-text kind must carry an attachment URL.
    """

    if not isinstance(sender_id, str) or not sender_id:
        raise ValidationError("senderId required")
    if not isinstance(receiver_id, str) or not receiver_id:
        raise ValidationError("receiverId required")
    kind = kind or KIND_TEXT
    if kind not in MESSAGE_KINDS:
        raise ValidationError(f"unsupported message type: {kind}")
    if body is None:
        body = ""
    if not isinstance(body, str):
        raise ValidationError("message must be a string")
    if kind != KIND_TEXT and (attachment is None or not attachment.url):
        raise ValidationError(f"{kind} messages require an attachment")
    return Message(
        id=message_id,
        sender_id=sender_id,
        receiver_id=receiver_id,
        body=body,
        kind=kind,
        timestamp_ms=timestamp_ms,
        file_id=attachment.file_id if attachment else None,
        file_url=attachment.url if attachment else None,
        file_name=attachment.filename if attachment else None,
    )


def attachment_from_fields(fields: Mapping[str, Any]) -> AttachmentRef | None:
    """Read the flat ``fileId``/``fileUrl``/``fileName`` wire fields."""

    url = fields.get("fileUrl")
    if not isinstance(url, str) or not url:
        return None
    file_id = fields.get("fileId")
    file_name = fields.get("fileName")
    return AttachmentRef(
        file_id=file_id if isinstance(file_id, str) and file_id else None,
        url=url,
        filename=file_name if isinstance(file_name, str) and file_name else None,
    )


class MessageStore(Protocol):
    durable: bool

    async def append(self, message: Message) -> Message: ...

    async def history(self, user_a: str, user_b: str) -> list[Message]: ...

    async def attachments(self, user_a: str, user_b: str) -> list[Message]: ...

    async def clear(self, user_a: str, user_b: str) -> int: ...


class InMemoryMessageStore:
    """Transient message store: an ordered list with the durable store's query semantics."""

    durable = False

    def __init__(self) -> None:
        self._messages: List[Message] = []
        self._ids: set[str] = set()

    def _unique_id(self, candidate: str) -> str:
        if candidate not in self._ids:
            return candidate
        suffix = 1
        while f"{candidate}-{suffix}" in self._ids:
            suffix += 1
        return f"{candidate}-{suffix}"

    async def append(self, message: Message) -> Message:
        stored = message.with_id(self._unique_id(message.id))
        self._messages.append(stored)
        self._ids.add(stored.id)
        return stored

    async def history(self, user_a: str, user_b: str) -> list[Message]:
        matching = [m for m in self._messages if m.involves(user_a, user_b)]
        # sorted() is stable, so equal timestamps keep insertion order.
        return sorted(matching, key=lambda m: m.timestamp_ms)

    async def attachments(self, user_a: str, user_b: str) -> list[Message]:
        history = await self.history(user_a, user_b)
        return [m for m in reversed(history) if m.kind != KIND_TEXT]

    async def clear(self, user_a: str, user_b: str) -> int:
        before = len(self._messages)
        kept = [m for m in self._messages if not m.involves(user_a, user_b)]
        self._messages = kept
        self._ids = {m.id for m in kept}
        return before - len(kept)

    def __len__(self) -> int:
        return len(self._messages)
