"""Per-attachment upload state: pending -> uploaded | failed."""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional

PENDING = "pending"
UPLOADED = "uploaded"
FAILED = "failed"


def kind_for_mimetype(mimetype: Optional[str]) -> str:
    mimetype = (mimetype or "").lower()
    if mimetype.startswith("image/"):
        return "image"
    if mimetype.startswith("audio/"):
        return "audio"
    return "file"


def new_temp_id(now_ms: Optional[int] = None) -> str:
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    return f"temp-{now_ms}"


@dataclass(frozen=True)
class PendingUpload:
    temp_id: str
    filename: str
    mimetype: str
    status: str = PENDING
    file_id: Optional[str] = None
    url: Optional[str] = None
    error: Optional[str] = None

    @property
    def kind(self) -> str:
        return kind_for_mimetype(self.mimetype)

    @property
    def id(self) -> str:
        """Server file id once uploaded, the temporary id before."""

        return self.file_id or self.temp_id

    def mark_uploaded(self, reference: Mapping[str, Any]) -> "PendingUpload":
        if self.status != PENDING:
            raise ValueError(f"cannot complete upload in state {self.status}")
        url = reference.get("url")
        if not url:
            raise ValueError("upload reference missing url")
        return replace(
            self,
            status=UPLOADED,
            file_id=reference.get("fileId"),
            url=url,
            filename=reference.get("filename") or self.filename,
            mimetype=reference.get("mimetype") or self.mimetype,
        )

    def mark_failed(self, error: str) -> "PendingUpload":
        if self.status != PENDING:
            raise ValueError(f"cannot fail upload in state {self.status}")
        return replace(self, status=FAILED, error=error)

    def message_fields(self) -> Dict[str, Any]:
        """Fields for the ``private_message`` frame announcing this attachment."""

        if self.status != UPLOADED:
            raise ValueError("attachment is not uploaded yet")
        fields: Dict[str, Any] = {"type": self.kind, "fileUrl": self.url, "fileName": self.filename}
        if self.file_id:
            fields["fileId"] = self.file_id
        return fields


def start_upload(filename: str, mimetype: Optional[str], *, now_ms: Optional[int] = None) -> PendingUpload:
    return PendingUpload(
        temp_id=new_temp_id(now_ms),
        filename=filename,
        mimetype=mimetype or "application/octet-stream",
    )
