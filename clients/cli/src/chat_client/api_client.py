"""Minimal stdlib HTTP client for the chat gateway's request/response surface."""

from __future__ import annotations

import json
import secrets
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, List, Optional


class ChatApiError(Exception):
    def __init__(self, status: int, message: str):
        self.status = status
        self.message = message
        super().__init__(f"{status}: {message}")


def _error_from_http(http_error: urllib.error.HTTPError) -> ChatApiError:
    message = http_error.reason if isinstance(http_error.reason, str) else "request failed"
    try:
        raw = http_error.read().decode("utf-8")
        payload = json.loads(raw) if raw else {}
    except (OSError, ValueError):
        payload = {}
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        message = payload["error"]
    return ChatApiError(http_error.code, message)


def _build_url(base_url: str, path: str, query: Optional[Dict[str, str]] = None) -> str:
    url = f"{base_url.rstrip('/')}{path}"
    if query:
        url += "?" + urllib.parse.urlencode(query)
    return url


def _segment(value: str) -> str:
    return urllib.parse.quote(value, safe="")


def _request(request: urllib.request.Request) -> Any:
    try:
        with urllib.request.urlopen(request) as response:
            raw = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        raise _error_from_http(exc) from exc
    return json.loads(raw) if raw else {}


def _post_json(url: str, payload: Dict[str, object]) -> Any:
    body = json.dumps(payload).encode("utf-8")
    request = urllib.request.Request(url, data=body, headers={"Content-Type": "application/json"}, method="POST")
    return _request(request)


def _get_json(url: str) -> Any:
    return _request(urllib.request.Request(url, method="GET"))


def register(base_url: str, username: str, password: str) -> Dict[str, Any]:
    response = _post_json(_build_url(base_url, "/api/register"), {"username": username, "password": password})
    return dict(response["user"])


def login(base_url: str, username: str, password: str) -> Dict[str, Any]:
    response = _post_json(_build_url(base_url, "/api/login"), {"username": username, "password": password})
    return dict(response["user"])


def list_users(base_url: str, current_user_id: Optional[str] = None) -> List[Dict[str, Any]]:
    query = {"currentUserId": current_user_id} if current_user_id else None
    return list(_get_json(_build_url(base_url, "/api/users", query)))


def fetch_history(base_url: str, user_a: str, user_b: str) -> List[Dict[str, Any]]:
    return list(_get_json(_build_url(base_url, f"/api/messages/{_segment(user_a)}/{_segment(user_b)}")))


def fetch_attachments(base_url: str, user_a: str, user_b: str) -> List[Dict[str, Any]]:
    path = f"/api/messages/{_segment(user_a)}/{_segment(user_b)}/attachments"
    return list(_get_json(_build_url(base_url, path)))


def clear_history(base_url: str, user_a: str, user_b: str) -> int:
    url = _build_url(base_url, f"/api/messages/{_segment(user_a)}/{_segment(user_b)}")
    response = _request(urllib.request.Request(url, method="DELETE"))
    return int(response.get("deletedCount", 0))


def _multipart_body(field: str, filename: str, data: bytes, mimetype: str) -> tuple[bytes, str]:
    boundary = f"----chat{secrets.token_hex(12)}"
    safe_name = filename.replace('"', "")
    head = (
        f"--{boundary}\r\n"
        f'Content-Disposition: form-data; name="{field}"; filename="{safe_name}"\r\n'
        f"Content-Type: {mimetype}\r\n\r\n"
    ).encode("utf-8")
    tail = f"\r\n--{boundary}--\r\n".encode("utf-8")
    return head + data + tail, f"multipart/form-data; boundary={boundary}"


def upload_file(
    base_url: str,
    filename: str,
    data: bytes,
    mimetype: str = "application/octet-stream",
) -> Dict[str, Any]:
    """Upload one file; returns ``{fileId, url, filename, mimetype, size}``."""

    body, content_type = _multipart_body("file", filename, data, mimetype)
    request = urllib.request.Request(
        _build_url(base_url, "/api/upload"),
        data=body,
        headers={"Content-Type": content_type},
        method="POST",
    )
    return dict(_request(request))


def download_file(base_url: str, url_or_file_id: str) -> bytes:
    path = url_or_file_id if url_or_file_id.startswith("/") else f"/api/files/{_segment(url_or_file_id)}"
    try:
        with urllib.request.urlopen(_build_url(base_url, path)) as response:
            return response.read()
    except urllib.error.HTTPError as exc:
        raise _error_from_http(exc) from exc
