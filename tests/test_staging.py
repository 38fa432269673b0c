"""Tests for staging of upload bytes."""

import pytest

from relay.exceptions import FileTooLargeError
from relay.staging import (
    MemoryStagedPayload,
    StagingTracker,
    TempFileStagedPayload,
    stage_upload,
    staged_upload,
)


class ChunkedSource:
    """Async reader handing out at most ``chunk`` bytes per call."""

    def __init__(self, data: bytes, chunk: int = 4) -> None:
        self.data = data
        self.chunk = chunk
        self.offset = 0

    async def read(self, size: int = -1) -> bytes:
        step = self.chunk if size < 0 else min(size, self.chunk)
        piece = self.data[self.offset:self.offset + step]
        self.offset += len(piece)
        return piece


@pytest.mark.asyncio()
@pytest.mark.parametrize("strategy", ["memory", "disk"])
async def test_stage_and_reopen(strategy, tmp_path):
    tracker = StagingTracker()
    staged = await stage_upload(
        ChunkedSource(b"hello world"),
        max_bytes=100,
        strategy=strategy,
        temp_dir=str(tmp_path),
        filename="greeting.txt",
        tracker=tracker,
    )

    assert staged.size == 11
    with staged.open() as first, staged.open() as second:
        assert first.read() == b"hello world"
        assert second.read() == b"hello world"
    assert tracker.outstanding == 1

    staged.release()
    assert tracker.acquired == tracker.released == 1


@pytest.mark.asyncio()
async def test_disk_staging_removes_the_temp_file(tmp_path):
    tracker = StagingTracker()
    staged = await stage_upload(
        ChunkedSource(b"abc"),
        max_bytes=10,
        strategy="disk",
        temp_dir=str(tmp_path),
        filename="a.txt",
        tracker=tracker,
    )
    assert isinstance(staged, TempFileStagedPayload)
    assert staged.path.exists()
    assert staged.path.suffix == ".txt"

    staged.release()

    assert not staged.path.exists()
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio()
@pytest.mark.parametrize("strategy", ["memory", "disk"])
async def test_oversized_upload_is_rejected_and_released(strategy, tmp_path):
    tracker = StagingTracker()
    with pytest.raises(FileTooLargeError) as excinfo:
        await stage_upload(
            ChunkedSource(b"x" * 20),
            max_bytes=10,
            strategy=strategy,
            temp_dir=str(tmp_path),
            tracker=tracker,
        )

    assert excinfo.value.max_bytes == 10
    assert tracker.acquired == tracker.released == 1
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio()
async def test_payload_of_exactly_max_bytes_is_accepted():
    staged = await stage_upload(ChunkedSource(b"x" * 10), max_bytes=10, tracker=StagingTracker())
    assert staged.size == 10
    staged.release()


def test_release_is_idempotent():
    tracker = StagingTracker()
    staged = MemoryStagedPayload(tracker)

    staged.release()
    staged.release()

    assert staged.released
    assert tracker.acquired == tracker.released == 1
    with pytest.raises(ValueError):
        staged.open()


@pytest.mark.asyncio()
async def test_cleanup_failure_is_logged_not_raised(tmp_path, log_messages):
    tracker = StagingTracker()
    staged = await stage_upload(
        ChunkedSource(b"abc"),
        max_bytes=10,
        strategy="disk",
        temp_dir=str(tmp_path),
        tracker=tracker,
    )
    staged.path.unlink()

    staged.release()

    assert tracker.released == 1
    assert any("Could not release staged upload" in line for line in log_messages)


@pytest.mark.asyncio()
@pytest.mark.parametrize("strategy", ["memory", "disk"])
async def test_context_manager_releases_on_error(strategy, tmp_path):
    tracker = StagingTracker()

    with pytest.raises(RuntimeError):
        async with staged_upload(
            ChunkedSource(b"abc"),
            max_bytes=10,
            strategy=strategy,
            temp_dir=str(tmp_path),
            tracker=tracker,
        ) as staged:
            assert staged.size == 3
            raise RuntimeError("orchestration blew up")

    assert staged.released
    assert tracker.acquired == tracker.released == 1
    assert list(tmp_path.iterdir()) == []
