"""Contact list assembly: last-message previews for every directory user."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

NO_MESSAGES = "No messages yet"
DEFAULT_DROP_EMPTY_LIMIT = 4

HistoryFetcher = Callable[[str, str], Sequence[Mapping[str, Any]]]


@dataclass(frozen=True)
class ConversationPreview:
    contact_id: str
    username: str
    avatar: str
    is_online: bool = False
    last_message: str = NO_MESSAGES
    last_message_time: Optional[int] = None
    unread: int = 0

    @property
    def is_empty(self) -> bool:
        return self.last_message_time is None and (not self.last_message or self.last_message == NO_MESSAGES)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.contact_id,
            "username": self.username,
            "avatar": self.avatar,
            "isOnline": self.is_online,
            "lastMessage": self.last_message,
            "lastMessageTime": self.last_message_time,
            "unread": self.unread,
        }


def preview_text(message: Mapping[str, Any]) -> str:
    kind = message.get("type") or "text"
    if kind == "image":
        return "Photo"
    if kind == "file":
        return message.get("fileName") or "File"
    if kind == "audio":
        return "Voice message"
    return message.get("message") or ""


def _is_unknown(username: str) -> bool:
    name = username.strip()
    return not name or name.lower() == "unknown"


def drop_leading_empty(previews: Iterable[ConversationPreview], limit: int) -> List[ConversationPreview]:
    """Drop at most ``limit`` empty or unnamed entries, scanning front to back."""

    removed = 0
    kept: List[ConversationPreview] = []
    for preview in previews:
        if removed < limit and (preview.is_empty or _is_unknown(preview.username)):
            removed += 1
            continue
        kept.append(preview)
    return kept


def build_contact_list(
    directory_users: Iterable[Mapping[str, Any]],
    current_user_id: str,
    history: HistoryFetcher,
    *,
    drop_empty_limit: int = DEFAULT_DROP_EMPTY_LIMIT,
) -> List[ConversationPreview]:
    """Build the chat list for ``current_user_id``.

    ``history(a, b)`` returns the conversation in ascending time order. A
    failing fetch leaves that contact with the empty placeholder rather than
    failing the whole list.
    """

    previews: List[ConversationPreview] = []
    for user in directory_users:
        contact_id = str(user.get("id"))
        if contact_id == current_user_id:
            continue
        username = str(user.get("username") or "")
        try:
            messages = list(history(current_user_id, contact_id))
        except Exception as exc:
            logger.warning("History fetch failed for %s: %s", contact_id, exc)
            messages = []
        last = messages[-1] if messages else None
        previews.append(
            ConversationPreview(
                contact_id=contact_id,
                username=username,
                avatar=str(user.get("avatar") or (username[:1].upper() or "U")),
                is_online=bool(user.get("isOnline")),
                last_message=preview_text(last) if last else NO_MESSAGES,
                last_message_time=last.get("timestamp") if last else None,
            )
        )
    if drop_empty_limit > 0:
        return drop_leading_empty(previews, drop_empty_limit)
    return previews


def time_ago(timestamp_ms: Optional[int], now_ms: Optional[int] = None) -> str:
    """Short recency label: now, 5m ago, 3h ago, 2d ago, else a clock time."""

    if timestamp_ms is None:
        return ""
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    seconds = max(0, (now_ms - timestamp_ms) // 1000)
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24
    if seconds < 60:
        return "now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"
    if days < 7:
        return f"{days}d ago"
    return time.strftime("%I:%M %p", time.localtime(timestamp_ms / 1000)).lstrip("0")
