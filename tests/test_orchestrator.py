"""Tests for the sequential multi-provider upload orchestrator."""

import asyncio

import pytest

from relay.exceptions import AllProvidersFailedError, NoProvidersConfiguredError
from relay.orchestrator import UploadOrchestrator
from relay.pool import CredentialPool
from relay.staging import MemoryStagedPayload, StagingTracker
from tests.fakes import FakeBackend, credentials

NAMES = ("P1", "P2", "P3", "P4")


async def _staged(data: bytes = b"0123456789") -> MemoryStagedPayload:
    staged = MemoryStagedPayload(StagingTracker())
    await staged.append(data)
    await staged.seal()
    return staged


def _orchestrator(backend: FakeBackend, *names: str, topology: str = "round_robin", timeout=None):
    pool = CredentialPool(credentials(*(names or NAMES)))
    return UploadOrchestrator(pool, {"cloudinary": backend}, topology=topology, attempt_timeout=timeout)


@pytest.mark.asyncio()
@pytest.mark.parametrize("failing", range(len(NAMES)))
@pytest.mark.parametrize("topology", ["round_robin", "fallback"])
async def test_first_success_after_k_failures(failing, topology):
    backend = FakeBackend(failures={name: f"{name} is down" for name in NAMES[:failing]})
    orchestrator = _orchestrator(backend, topology=topology)

    result = await orchestrator.upload(await _staged(), "a.txt")

    winner = NAMES[failing]
    assert result.service == winner
    assert result.url == f"https://example/{winner}/a.txt"
    assert result.errors == [f"{name}: {name} is down" for name in NAMES[:failing]]
    assert backend.calls == list(NAMES[: failing + 1])


@pytest.mark.asyncio()
async def test_every_attempt_gets_the_full_payload():
    backend = FakeBackend(failures={"P1": "boom", "P2": "boom"})
    orchestrator = _orchestrator(backend)

    await orchestrator.upload(await _staged(b"payload!"), "a.bin")

    assert backend.payloads == [b"payload!"] * 3


@pytest.mark.asyncio()
async def test_all_failures_raise_aggregate_in_attempt_order():
    backend = FakeBackend(failures={name: "quota exceeded" for name in NAMES})
    orchestrator = _orchestrator(backend)

    with pytest.raises(AllProvidersFailedError) as excinfo:
        await orchestrator.upload(await _staged(), "a.txt")

    assert excinfo.value.errors == [f"{name}: quota exceeded" for name in NAMES]
    assert backend.calls == list(NAMES)


@pytest.mark.asyncio()
async def test_empty_pool_fails_without_any_call():
    backend = FakeBackend()
    orchestrator = UploadOrchestrator(CredentialPool([]), {"cloudinary": backend})

    with pytest.raises(NoProvidersConfiguredError):
        await orchestrator.upload(await _staged(), "a.txt")

    assert backend.calls == []


@pytest.mark.asyncio()
async def test_round_robin_next_request_starts_after_the_winner():
    backend = FakeBackend(failures={"P2": "down"})
    orchestrator = _orchestrator(backend)

    first = await orchestrator.upload(await _staged(), "a.txt")
    assert first.service == "P1"
    assert orchestrator.pool.cursor == 1

    second = await orchestrator.upload(await _staged(), "a.txt")
    assert second.service == "P3"
    assert orchestrator.pool.cursor == 3

    third = await orchestrator.upload(await _staged(), "a.txt")
    assert third.service == "P4"
    assert orchestrator.pool.cursor == 0

    assert backend.calls == ["P1", "P2", "P3", "P4"]


@pytest.mark.asyncio()
async def test_round_robin_total_failure_keeps_cursor():
    backend = FakeBackend(failures={name: "down" for name in NAMES})
    orchestrator = _orchestrator(backend)
    orchestrator.pool.advance_past(1)

    with pytest.raises(AllProvidersFailedError) as excinfo:
        await orchestrator.upload(await _staged(), "a.txt")

    assert orchestrator.pool.cursor == 2
    assert [error.split(":")[0] for error in excinfo.value.errors] == ["P3", "P4", "P1", "P2"]


@pytest.mark.asyncio()
async def test_fallback_always_starts_from_the_first_provider():
    backend = FakeBackend()
    orchestrator = _orchestrator(backend, topology="fallback")

    for _ in range(3):
        result = await orchestrator.upload(await _staged(), "a.txt")
        assert result.service == "P1"

    assert backend.calls == ["P1", "P1", "P1"]
    assert orchestrator.pool.cursor == 0


@pytest.mark.asyncio()
async def test_timeout_counts_as_provider_failure():
    backend = FakeBackend(delays={"P1": 0.5})
    orchestrator = _orchestrator(backend, "P1", "P2", timeout=0.05)

    result = await orchestrator.upload(await _staged(), "a.txt")

    assert result.service == "P2"
    assert result.errors == ["P1: timed out after 0.05s"]


@pytest.mark.asyncio()
async def test_abandoned_attempt_is_logged(log_messages):
    backend = FakeBackend(delays={"P1": 0.3})
    orchestrator = _orchestrator(backend, "P1", "P2", timeout=0.05)

    await orchestrator.upload(await _staged(), "report.pdf")

    assert any("Abandoned attempt on P1" in line and "report.pdf" in line for line in log_messages)
    await asyncio.sleep(0.3)


@pytest.mark.asyncio()
@pytest.mark.parametrize("timeout", [None, 5.0])
async def test_adapter_timeout_error_is_a_provider_failure(timeout):
    backend = FakeBackend(crash={"P1": TimeoutError("socket read timed out")})
    orchestrator = _orchestrator(backend, "P1", "P2", timeout=timeout)

    result = await orchestrator.upload(await _staged(), "a.txt")

    assert result.service == "P2"
    assert result.errors == ["P1: TimeoutError: socket read timed out"]
    assert backend.calls == ["P1", "P2"]


@pytest.mark.asyncio()
async def test_adapter_connection_error_is_a_provider_failure():
    backend = FakeBackend(crash={"P1": ConnectionResetError("reset by peer")})
    orchestrator = _orchestrator(backend, "P1", "P2", topology="fallback")

    result = await orchestrator.upload(await _staged(), "a.txt")

    assert result.service == "P2"
    assert result.errors == ["P1: ConnectionResetError: reset by peer"]


@pytest.mark.asyncio()
async def test_cancellation_stops_the_chain():
    backend = FakeBackend(delays={"P1": 0.3})
    orchestrator = _orchestrator(backend, "P1", "P2")

    task = asyncio.create_task(orchestrator.upload(await _staged(), "a.txt"))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    # Let the worker thread of the abandoned attempt finish.
    await asyncio.sleep(0.4)
    assert backend.calls == ["P1"]
    assert orchestrator.pool.cursor == 0


@pytest.mark.asyncio()
async def test_unexpected_error_propagates_without_further_attempts():
    backend = FakeBackend(crash={"P1": RuntimeError("bug")})
    orchestrator = _orchestrator(backend, "P1", "P2")

    with pytest.raises(RuntimeError):
        await orchestrator.upload(await _staged(), "a.txt")

    assert backend.calls == ["P1"]


@pytest.mark.asyncio()
async def test_missing_adapter_is_recorded_as_provider_failure():
    backend = FakeBackend()
    pool = CredentialPool(credentials("Orphan", backend="dropbox") + credentials("P1"))
    orchestrator = UploadOrchestrator(pool, {"cloudinary": backend}, topology="fallback")

    result = await orchestrator.upload(await _staged(), "a.txt")

    assert result.service == "P1"
    assert result.errors == ["Orphan: no adapter for backend 'dropbox'"]


@pytest.mark.asyncio()
async def test_each_failure_is_logged_once(log_messages):
    backend = FakeBackend(failures={"P1": "quota exceeded"})
    orchestrator = _orchestrator(backend, "P1", "P2")

    await orchestrator.upload(await _staged(), "a.txt")

    assert sum("quota exceeded" in line for line in log_messages) == 1
