from __future__ import annotations

from typing import Any

import cloudinary.api
import cloudinary.exceptions
import cloudinary.uploader

from relay.exceptions import ProviderError
from relay.models import ProviderCredential, StoredObject
from relay.storage import Payload, as_stream, unique_object_name

GIB = 1024 ** 3


class CloudinaryBackend:
    """Cloudinary media storage. Assets are public on upload."""

    kind = "cloudinary"
    required_fields = ("cloud_name", "api_key", "api_secret")

    @staticmethod
    def _auth(credential: ProviderCredential) -> dict[str, str]:
        # Passed per call so concurrent uploads never share a global config.
        return {
            "cloud_name": credential.fields["cloud_name"],
            "api_key": credential.fields["api_key"],
            "api_secret": credential.fields["api_secret"],
        }

    def store(
        self,
        payload: Payload,
        filename: str,
        credential: ProviderCredential,
        *,
        content_type: str | None = None,
        folder: str = "uploads",
    ) -> StoredObject:
        try:
            result = cloudinary.uploader.upload(
                as_stream(payload),
                resource_type="auto",
                folder=folder,
                public_id=unique_object_name(filename),
                overwrite=False,
                **self._auth(credential),
            )
        except cloudinary.exceptions.Error as exc:
            raise ProviderError(credential.name, str(exc) or type(exc).__name__) from exc
        except Exception as exc:
            raise ProviderError(credential.name, f"{type(exc).__name__}: {exc}") from exc

        secure_url = result.get("secure_url") or result.get("url")
        if not secure_url:
            raise ProviderError(credential.name, "Cloudinary upload did not return a public URL")
        return StoredObject(url=secure_url, asset_id=str(result.get("public_id", "")))

    def usage(self, credential: ProviderCredential) -> dict[str, Any] | None:
        try:
            report = cloudinary.api.usage(**self._auth(credential))
        except Exception as exc:
            raise ProviderError(credential.name, str(exc) or type(exc).__name__) from exc

        storage = report.get("storage") or {}
        stats: dict[str, Any] = {}
        if storage.get("usage") is not None:
            stats["storage_used_gb"] = round(float(storage["usage"]) / GIB, 2)
        if storage.get("limit") is not None:
            stats["storage_limit_gb"] = round(float(storage["limit"]) / GIB, 2)
        return stats


__all__ = ["CloudinaryBackend"]
