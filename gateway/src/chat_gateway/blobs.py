from __future__ import annotations

import asyncio
import json
import logging
import re
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Protocol

from .errors import NotFoundError, StorageError


logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
_FILE_ID_RE = re.compile(r"^[0-9a-f]{24}$")


def new_file_id() -> str:
    return secrets.token_hex(12)


def file_url(file_id: str) -> str:
    return f"/api/files/{file_id}"


def is_valid_file_id(file_id: str) -> bool:
    return bool(_FILE_ID_RE.match(file_id))


@dataclass(frozen=True)
class BlobInfo:
    """Attachment reference returned by an upload."""

    file_id: str
    filename: str
    content_type: str
    size: int

    @property
    def url(self) -> str:
        return file_url(self.file_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fileId": self.file_id,
            "url": self.url,
            "filename": self.filename,
            "mimetype": self.content_type,
            "size": self.size,
        }


@dataclass(frozen=True)
class Blob:
    info: BlobInfo
    data: bytes


class BlobStore(Protocol):
    durable: bool

    async def put(self, data: bytes, filename: str, content_type: str | None) -> BlobInfo: ...

    async def get(self, file_id: str) -> Blob: ...

    async def delete(self, file_id: str) -> bool: ...


class DiskBlobStore:
    """Stores uploads as files under a directory, with a JSON sidecar for metadata."""

    durable = False

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    def _data_path(self, file_id: str) -> Path:
        return self._root / f"{file_id}.bin"

    def _meta_path(self, file_id: str) -> Path:
        return self._root / f"{file_id}.json"

    async def put(self, data: bytes, filename: str, content_type: str | None) -> BlobInfo:
        info = BlobInfo(
            file_id=new_file_id(),
            filename=filename,
            content_type=content_type or DEFAULT_CONTENT_TYPE,
            size=len(data),
        )
        try:
            await asyncio.to_thread(self._write, info, data)
        except OSError as exc:
            raise StorageError(f"failed to store upload: {exc}") from exc
        return info

    def _write(self, info: BlobInfo, data: bytes) -> None:
        self._data_path(info.file_id).write_bytes(data)
        meta = {"filename": info.filename, "content_type": info.content_type, "size": info.size}
        self._meta_path(info.file_id).write_text(json.dumps(meta), encoding="utf-8")

    async def get(self, file_id: str) -> Blob:
        if not is_valid_file_id(file_id):
            raise NotFoundError("File not found")
        try:
            return await asyncio.to_thread(self._read, file_id)
        except FileNotFoundError as exc:
            raise NotFoundError("File not found") from exc
        except (OSError, ValueError) as exc:
            raise StorageError(f"failed to read upload: {exc}") from exc

    def _read(self, file_id: str) -> Blob:
        meta = json.loads(self._meta_path(file_id).read_text(encoding="utf-8"))
        data = self._data_path(file_id).read_bytes()
        info = BlobInfo(
            file_id=file_id,
            filename=str(meta.get("filename") or file_id),
            content_type=str(meta.get("content_type") or DEFAULT_CONTENT_TYPE),
            size=len(data),
        )
        return Blob(info=info, data=data)

    async def delete(self, file_id: str) -> bool:
        if not is_valid_file_id(file_id):
            return False
        try:
            return await asyncio.to_thread(self._unlink, file_id)
        except OSError as exc:
            raise StorageError(f"failed to delete upload: {exc}") from exc

    def _unlink(self, file_id: str) -> bool:
        removed = False
        for path in (self._data_path(file_id), self._meta_path(file_id)):
            try:
                path.unlink()
                removed = True
            except FileNotFoundError:
                continue
        return removed
