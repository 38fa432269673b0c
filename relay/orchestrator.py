"""Sequential multi-provider upload with fallback.

Two topologies share one loop:

* ``fallback``: the pool is walked from its first entry on every request.
* ``round_robin``: the walk starts at the pool cursor; a success at position
  P moves the cursor to P + 1. A sweep in which every account fails leaves the
  cursor where that sweep started.

Each entry is attempted at most once per request. ``ProviderError``, network
``OSError`` from an adapter and per-attempt timeouts are recorded and the walk
continues; anything else, cancellation included, propagates immediately.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Literal

from loguru import logger

from relay.exceptions import AllProvidersFailedError, NoProvidersConfiguredError, ProviderError
from relay.models import ProviderCredential, StoredObject, UploadResult
from relay.pool import CredentialPool
from relay.staging import StagedPayload
from relay.storage import StorageBackend

Topology = Literal["round_robin", "fallback"]


class UploadOrchestrator:
    def __init__(
        self,
        pool: CredentialPool,
        backends: Mapping[str, StorageBackend],
        *,
        topology: Topology = "round_robin",
        attempt_timeout: float | None = None,
        folder: str = "uploads",
    ) -> None:
        self.pool = pool
        self.backends = dict(backends)
        self.topology = topology
        self.attempt_timeout = attempt_timeout
        self.folder = folder

    @property
    def rotating(self) -> bool:
        return self.topology == "round_robin"

    def _candidates(self) -> list[tuple[int, ProviderCredential]]:
        if self.rotating:
            return self.pool.sweep()
        return list(enumerate(self.pool.entries))

    async def upload(
        self,
        staged: StagedPayload,
        filename: str,
        content_type: str | None = None,
    ) -> UploadResult:
        """Store ``staged`` with the first provider that accepts it.

        Raises:
            NoProvidersConfiguredError: The pool is empty; nothing was attempted.
            AllProvidersFailedError: Every entry failed; ``errors`` lists
                ``"<name>: <detail>"`` in attempt order.
        """
        candidates = self._candidates()
        if not candidates:
            raise NoProvidersConfiguredError("No storage providers configured")

        errors: list[str] = []
        for index, credential in candidates:
            logger.info("[{backend}] Trying {name}...", backend=credential.backend, name=credential.name)
            try:
                stored = await self._attempt(staged, filename, content_type, credential)
            except ProviderError as exc:
                detail = exc.detail
            else:
                if self.rotating:
                    self.pool.advance_past(index)
                logger.info("[{backend}] Uploaded via {name}", backend=credential.backend, name=credential.name)
                return UploadResult(url=stored.url, asset_id=stored.asset_id, service=credential.name, errors=errors)

            errors.append(f"{credential.name}: {detail}")
            logger.warning(
                "[{backend}] {name} failed: {detail}",
                backend=credential.backend,
                name=credential.name,
                detail=detail,
            )

        raise AllProvidersFailedError(errors)

    async def _attempt(
        self,
        staged: StagedPayload,
        filename: str,
        content_type: str | None,
        credential: ProviderCredential,
    ) -> StoredObject:
        backend = self.backends.get(credential.backend)
        if backend is None:
            raise ProviderError(credential.name, f"no adapter for backend {credential.backend!r}")

        def _store() -> StoredObject:
            with staged.open() as stream:
                try:
                    return backend.store(
                        stream,
                        filename,
                        credential,
                        content_type=content_type,
                        folder=self.folder,
                    )
                except OSError as exc:
                    # Network failures (socket timeouts included) that an adapter let through.
                    raise ProviderError(credential.name, f"{type(exc).__name__}: {exc}") from exc

        try:
            return await asyncio.wait_for(asyncio.to_thread(_store), timeout=self.attempt_timeout)
        except asyncio.TimeoutError as exc:
            if self.attempt_timeout is None:
                raise
            # The worker thread cannot be interrupted and may still finish the upload.
            logger.warning(
                "[{backend}] Abandoned attempt on {name} may still complete and leave an untracked object ({filename})",
                backend=credential.backend,
                name=credential.name,
                filename=filename,
            )
            raise ProviderError(credential.name, f"timed out after {self.attempt_timeout:g}s") from exc


__all__ = ["Topology", "UploadOrchestrator"]
