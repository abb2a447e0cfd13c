from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Tuple


def split_media(messages: Iterable[Mapping[str, Any]]) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Split a conversation into (images, other attachments), newest first."""

    images: List[Dict[str, Any]] = []
    attachments: List[Dict[str, Any]] = []
    for msg in messages:
        url = msg.get("fileUrl")
        if not url:
            continue
        name = msg.get("fileName") or msg.get("message")
        kind = msg.get("type")
        if kind == "image":
            images.append({"id": msg.get("id"), "url": url, "name": name})
        elif kind in ("file", "audio"):
            attachments.append({"id": msg.get("id"), "name": name, "url": url, "type": kind})
    images.reverse()
    attachments.reverse()
    return images, attachments
