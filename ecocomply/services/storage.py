"""
Local file storage for documents, evidence, and generated packs.

Files live under ``UPLOAD_DIR/<bucket>/`` with UUID names; the database
stores the path relative to UPLOAD_DIR so the directory can move.
"""
from __future__ import annotations

import dataclasses
import hashlib
import logging
import os
import uuid
from pathlib import Path

import aiofiles
from fastapi import HTTPException, UploadFile, status

from ecocomply.config import settings

logger = logging.getLogger(__name__)

DOCUMENTS_BUCKET = "documents"
EVIDENCE_BUCKET = "evidence"
PACKS_BUCKET = "packs"

CHUNK_SIZE = 1024 * 1024  # 1 MB slices


@dataclasses.dataclass
class StoredFile:
    path: str       # relative to the storage root
    size: int
    sha256: str


class LocalStorage:
    """Bucketed file store on the local filesystem."""

    def __init__(self, root: str | None = None) -> None:
        self.root = os.path.abspath(root or settings.UPLOAD_DIR)

    def resolve(self, path: str) -> str:
        """Absolute path for a stored relative path; refuses paths escaping the root."""
        full = os.path.abspath(os.path.join(self.root, path))
        if not full.startswith(self.root + os.sep):
            raise ValueError(f"Path escapes storage root: {path!r}")
        return full

    def _new_path(self, bucket: str, extension: str) -> str:
        os.makedirs(os.path.join(self.root, bucket), exist_ok=True)
        return f"{bucket}/{uuid.uuid4().hex}{extension}"

    async def save_upload(self, bucket: str, upload: UploadFile, max_bytes: int) -> StoredFile:
        """
        Stream *upload* to disk while enforcing *max_bytes*.

        Raises HTTPException(413) and removes the partial file when the limit
        is exceeded.
        """
        extension = Path(upload.filename or "").suffix.lower()
        rel_path = self._new_path(bucket, extension)
        full_path = self.resolve(rel_path)
        digest = hashlib.sha256()
        size = 0

        async with aiofiles.open(full_path, "wb") as out:
            while True:
                chunk = await upload.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > max_bytes:
                    await out.close()
                    self.remove(rel_path)
                    raise HTTPException(
                        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                        detail=f"File exceeds the {max_bytes // (1024 * 1024)} MB size limit.",
                    )
                digest.update(chunk)
                await out.write(chunk)

        logger.info("Saved %r → %s (%s bytes)", upload.filename, rel_path, f"{size:,}")
        return StoredFile(path=rel_path, size=size, sha256=digest.hexdigest())

    async def save_bytes(self, bucket: str, data: bytes, extension: str = "") -> StoredFile:
        rel_path = self._new_path(bucket, extension)
        async with aiofiles.open(self.resolve(rel_path), "wb") as out:
            await out.write(data)
        return StoredFile(
            path=rel_path, size=len(data), sha256=hashlib.sha256(data).hexdigest()
        )

    async def read_bytes(self, path: str) -> bytes:
        async with aiofiles.open(self.resolve(path), "rb") as fh:
            return await fh.read()

    def exists(self, path: str) -> bool:
        try:
            return os.path.isfile(self.resolve(path))
        except ValueError:
            return False

    def remove(self, path: str) -> None:
        """Delete a stored file, ignoring errors."""
        try:
            os.remove(self.resolve(path))
        except (OSError, ValueError):
            pass

    def is_writable(self) -> bool:
        os.makedirs(self.root, exist_ok=True)
        return os.access(self.root, os.W_OK)


def get_storage() -> LocalStorage:
    """FastAPI dependency / factory; reads UPLOAD_DIR at call time."""
    return LocalStorage()
