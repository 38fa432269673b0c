"""Storage backends (Cloudinary, Google Drive, S3-compatible object storage)."""

from __future__ import annotations

import io
import mimetypes
import re
import unicodedata
from pathlib import PurePath
from typing import Any, BinaryIO, Protocol, Union
from uuid import uuid4

from relay.models import ProviderCredential, StoredObject

Payload = Union[bytes, BinaryIO]

DEFAULT_CONTENT_TYPE = "application/octet-stream"
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]+")


class StorageBackend(Protocol):
    kind: str
    required_fields: tuple[str, ...]

    def store(
        self,
        payload: Payload,
        filename: str,
        credential: ProviderCredential,
        *,
        content_type: str | None = None,
        folder: str = "uploads",
    ) -> StoredObject:
        ...

    def usage(self, credential: ProviderCredential) -> dict[str, Any] | None:  # None: not supported
        ...


def sanitize_stem(filename: str, max_length: int = 64) -> str:
    stem = PurePath(filename or "").stem
    ascii_stem = unicodedata.normalize("NFKD", stem).encode("ascii", "ignore").decode("ascii")
    cleaned = _UNSAFE_CHARS.sub("_", ascii_stem).strip("_")
    return cleaned[:max_length] or "file"


def unique_object_name(filename: str, *, keep_extension: bool = False) -> str:
    """Collision-resistant object name: ``<uuid4 hex>_<sanitized stem>[.ext]``."""
    name = f"{uuid4().hex}_{sanitize_stem(filename)}"
    if keep_extension:
        suffix = PurePath(filename or "").suffix.lower()
        if suffix and _UNSAFE_CHARS.sub("", suffix[1:]) == suffix[1:]:
            name += suffix
    return name


def guess_content_type(filename: str, declared: str | None = None) -> str:
    if declared and declared != DEFAULT_CONTENT_TYPE:
        return declared
    guessed, _ = mimetypes.guess_type(filename or "")
    return guessed or declared or DEFAULT_CONTENT_TYPE


def as_stream(payload: Payload) -> BinaryIO:
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return io.BytesIO(bytes(payload))
    return payload


def default_backends() -> dict[str, StorageBackend]:
    from relay.storage.cloudinary import CloudinaryBackend
    from relay.storage.google_drive import GoogleDriveBackend
    from relay.storage.s3 import S3Backend

    backends: list[StorageBackend] = [CloudinaryBackend(), GoogleDriveBackend(), S3Backend()]
    return {backend.kind: backend for backend in backends}


__all__ = [
    "Payload",
    "StorageBackend",
    "as_stream",
    "default_backends",
    "guess_content_type",
    "sanitize_stem",
    "unique_object_name",
]
