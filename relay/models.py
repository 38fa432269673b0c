from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field


@dataclass(frozen=True)
class ProviderCredential:
    """One configured provider account.

    ``fields`` is the opaque credential bundle handed to the backend adapter;
    its keys depend on ``backend``.
    """

    name: str
    backend: str
    fields: Mapping[str, str] = field(default_factory=dict)

    def is_complete(self, required: Iterable[str]) -> bool:
        return all(self.fields.get(key) for key in required)

    def get(self, key: str, default: str | None = None) -> str | None:
        return self.fields.get(key, default)

    def __repr__(self) -> str:
        # Secrets stay out of tracebacks and log records.
        return f"ProviderCredential(name={self.name!r}, backend={self.backend!r})"


@dataclass(frozen=True)
class StoredObject:
    url: str
    asset_id: str


@dataclass
class UploadResult:
    url: str
    asset_id: str
    service: str
    errors: list[str] = field(default_factory=list)


__all__ = ["ProviderCredential", "StoredObject", "UploadResult"]
