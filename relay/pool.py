"""Credential pool: eligible provider accounts plus the round-robin cursor."""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping, Sequence

from loguru import logger

from relay.models import ProviderCredential
from relay.settings import Settings
from relay.storage import StorageBackend


class CredentialPool:
    """Immutable ordered set of eligible credentials with a rotation cursor.

    The cursor is only read and written under ``_lock``; every write keeps it
    in ``range(len(self))``.
    """

    def __init__(self, entries: Sequence[ProviderCredential]) -> None:
        self._entries: tuple[ProviderCredential, ...] = tuple(entries)
        self._cursor = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ProviderCredential]:
        return iter(self._entries)

    @property
    def entries(self) -> tuple[ProviderCredential, ...]:
        return self._entries

    @property
    def cursor(self) -> int:
        with self._lock:
            return self._cursor

    @property
    def next_name(self) -> str | None:
        if not self._entries:
            return None
        return self._entries[self.cursor].name

    def sweep(self) -> list[tuple[int, ProviderCredential]]:
        """All entries once, starting at the cursor and wrapping around."""
        size = len(self._entries)
        if not size:
            return []
        with self._lock:
            start = self._cursor
        return [((start + offset) % size, self._entries[(start + offset) % size]) for offset in range(size)]

    def advance_past(self, index: int) -> None:
        """Move the cursor to the entry after ``index``."""
        size = len(self._entries)
        if not size:
            return
        if not 0 <= index < size:
            raise IndexError(f"pool index {index} out of range for {size} entries")
        with self._lock:
            self._cursor = (index + 1) % size


def pool_kinds(settings: Settings) -> list[str]:
    if settings.upload.topology == "round_robin":
        return [settings.upload.round_robin_backend]
    return list(settings.upload.fallback_order)


def build_credential_pool(settings: Settings, backends: Mapping[str, StorageBackend]) -> CredentialPool:
    """Collect the fully configured accounts for the active topology.

    Partially configured accounts are logged once and left out for good.
    """
    eligible: list[ProviderCredential] = []
    for kind in pool_kinds(settings):
        backend = backends.get(kind)
        if backend is None:
            logger.warning("Unknown storage backend {kind!r} in configuration, skipping", kind=kind)
            continue
        for account in settings.providers.accounts_for(kind):
            credential = ProviderCredential(name=account.name, backend=kind, fields=account.resolve())
            if credential.is_complete(backend.required_fields):
                eligible.append(credential)
            else:
                logger.info("{name} ({kind}) not configured", name=account.name, kind=kind)
    return CredentialPool(eligible)


__all__ = ["CredentialPool", "build_credential_pool", "pool_kinds"]
