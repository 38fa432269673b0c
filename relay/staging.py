"""Staging of inbound upload bytes between receipt and provider upload.

A staged payload is acquired once per request and released exactly once,
whatever happens to the upload. Failing to delete a temporary file is logged
and never replaces the upload outcome.
"""

from __future__ import annotations

import asyncio
import io
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path, PurePath
from typing import BinaryIO, Literal, Protocol

from loguru import logger

from relay.exceptions import FileTooLargeError, ResourceCleanupError

CHUNK_SIZE = 1024 * 1024

StagingStrategy = Literal["memory", "disk"]


class AsyncReadable(Protocol):
    async def read(self, size: int = -1) -> bytes:
        ...


class StagingTracker:
    """Counts staged payload acquisitions and releases."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.acquired = 0
        self.released = 0

    def on_acquire(self) -> None:
        with self._lock:
            self.acquired += 1

    def on_release(self) -> None:
        with self._lock:
            self.released += 1

    @property
    def outstanding(self) -> int:
        with self._lock:
            return self.acquired - self.released


default_tracker = StagingTracker()


class StagedPayload(ABC):
    def __init__(self, tracker: StagingTracker | None = None) -> None:
        self._tracker = tracker or default_tracker
        self._released = False
        self.size = 0
        self._tracker.on_acquire()

    @property
    def released(self) -> bool:
        return self._released

    @abstractmethod
    async def append(self, chunk: bytes) -> None:
        ...

    async def seal(self) -> None:
        """Called once all bytes are in."""

    @abstractmethod
    def open(self) -> BinaryIO:
        """Fresh readable stream positioned at the first byte."""

    @abstractmethod
    def _release(self) -> None:
        ...

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            self._release()
        except Exception as exc:
            error = ResourceCleanupError(
                f"Could not release staged upload: {exc}",
                {"payload": repr(self)},
            )
            logger.warning("{message} ({payload})", message=error.message, payload=error.details["payload"])
        finally:
            self._tracker.on_release()


class MemoryStagedPayload(StagedPayload):
    def __init__(self, tracker: StagingTracker | None = None) -> None:
        super().__init__(tracker)
        self._buffer = bytearray()
        self._data = b""

    async def append(self, chunk: bytes) -> None:
        self._buffer.extend(chunk)
        self.size += len(chunk)

    async def seal(self) -> None:
        self._data = bytes(self._buffer)
        self._buffer = bytearray()

    @property
    def data(self) -> bytes:
        return self._data

    def open(self) -> BinaryIO:
        if self._released:
            raise ValueError("staged payload already released")
        return io.BytesIO(self._data)

    def _release(self) -> None:
        self._buffer = bytearray()
        self._data = b""

    def __repr__(self) -> str:
        return f"MemoryStagedPayload(size={self.size})"


class TempFileStagedPayload(StagedPayload):
    def __init__(
        self,
        tracker: StagingTracker | None = None,
        *,
        temp_dir: str | None = None,
        suffix: str = "",
    ) -> None:
        super().__init__(tracker)
        try:
            fd, name = tempfile.mkstemp(prefix="relay-", suffix=suffix, dir=temp_dir)
        except BaseException:
            # Nothing was created, but the acquisition was already counted.
            self._released = True
            self._tracker.on_release()
            raise
        self.path = Path(name)
        self._handle: BinaryIO | None = os.fdopen(fd, "wb")

    async def append(self, chunk: bytes) -> None:
        if self._handle is None:
            raise ValueError("staged payload is sealed")
        await asyncio.to_thread(self._handle.write, chunk)
        self.size += len(chunk)

    async def seal(self) -> None:
        if self._handle is not None:
            await asyncio.to_thread(self._handle.close)
            self._handle = None

    def open(self) -> BinaryIO:
        if self._released:
            raise ValueError("staged payload already released")
        return self.path.open("rb")

    def _release(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None
        self.path.unlink()

    def __repr__(self) -> str:
        return f"TempFileStagedPayload(path={str(self.path)!r}, size={self.size})"


def _new_payload(
    strategy: StagingStrategy,
    tracker: StagingTracker | None,
    temp_dir: str | None,
    filename: str,
) -> StagedPayload:
    if strategy == "memory":
        return MemoryStagedPayload(tracker)
    if strategy == "disk":
        return TempFileStagedPayload(tracker, temp_dir=temp_dir, suffix=PurePath(filename or "").suffix[:16])
    raise ValueError(f"Unknown staging strategy: {strategy}")


async def stage_upload(
    source: AsyncReadable,
    *,
    max_bytes: int,
    strategy: StagingStrategy = "memory",
    temp_dir: str | None = None,
    filename: str = "",
    tracker: StagingTracker | None = None,
) -> StagedPayload:
    """Read ``source`` in chunks into a staged payload of at most ``max_bytes``.

    Raises:
        FileTooLargeError: The source holds more than ``max_bytes`` bytes. The
            partially staged payload is released before the error propagates.
    """
    staged = _new_payload(strategy, tracker, temp_dir, filename)
    try:
        while True:
            chunk = await source.read(CHUNK_SIZE)
            if not chunk:
                break
            if staged.size + len(chunk) > max_bytes:
                raise FileTooLargeError(max_bytes)
            await staged.append(chunk)
        await staged.seal()
    except BaseException:
        staged.release()
        raise
    return staged


@asynccontextmanager
async def staged_upload(
    source: AsyncReadable,
    *,
    max_bytes: int,
    strategy: StagingStrategy = "memory",
    temp_dir: str | None = None,
    filename: str = "",
    tracker: StagingTracker | None = None,
) -> AsyncIterator[StagedPayload]:
    staged = await stage_upload(
        source,
        max_bytes=max_bytes,
        strategy=strategy,
        temp_dir=temp_dir,
        filename=filename,
        tracker=tracker,
    )
    try:
        yield staged
    finally:
        staged.release()


__all__ = [
    "CHUNK_SIZE",
    "MemoryStagedPayload",
    "StagedPayload",
    "StagingTracker",
    "TempFileStagedPayload",
    "default_tracker",
    "stage_upload",
    "staged_upload",
]
