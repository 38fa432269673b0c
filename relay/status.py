from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

from relay.exceptions import ProviderError
from relay.models import ProviderCredential
from relay.pool import CredentialPool
from relay.storage import StorageBackend


async def collect_pool_status(
    pool: CredentialPool,
    backends: Mapping[str, StorageBackend],
    *,
    timeout: float | None = None,
) -> list[dict[str, Any]]:
    """Query storage usage of every pool account concurrently."""

    async def _account_status(credential: ProviderCredential) -> dict[str, Any]:
        entry: dict[str, Any] = {"account": credential.name, "backend": credential.backend}
        backend = backends.get(credential.backend)
        if backend is None:
            entry.update(status="error", error=f"no adapter for backend {credential.backend!r}")
            return entry
        try:
            call = asyncio.to_thread(backend.usage, credential)
            stats = await (asyncio.wait_for(call, timeout=timeout) if timeout else call)
        except ProviderError as exc:
            entry.update(status="error", error=exc.detail)
        except asyncio.TimeoutError:
            entry.update(status="error", error=f"timed out after {timeout:g}s")
        else:
            if stats is None:
                entry["status"] = "unsupported"
            else:
                entry.update(stats)
                entry["status"] = "ok"
        return entry

    return list(await asyncio.gather(*(_account_status(credential) for credential in pool)))


__all__ = ["collect_pool_status"]
