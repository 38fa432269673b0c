from __future__ import annotations

from typing import Any

from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload
from loguru import logger

from relay.exceptions import ProviderError
from relay.models import ProviderCredential, StoredObject
from relay.storage import Payload, as_stream, guess_content_type, unique_object_name

TOKEN_URI = "https://oauth2.googleapis.com/token"
DRIVE_SCOPES = ["https://www.googleapis.com/auth/drive.file"]
GIB = 1024 ** 3


def _detail(exc: Exception) -> str:
    if isinstance(exc, HttpError):
        return f"HTTP {exc.resp.status}: {getattr(exc, 'reason', '') or exc}"
    if isinstance(exc, GoogleAuthError):
        return f"authentication failed: {exc}"
    return f"{type(exc).__name__}: {exc}"


class GoogleDriveBackend:
    """Google Drive through an OAuth refresh token.

    Drive files are private on creation; every upload is followed by an
    ``anyone``/``reader`` permission grant and fails if that grant fails.
    """

    kind = "google_drive"
    required_fields = ("client_id", "client_secret", "refresh_token")

    def _service(self, credential: ProviderCredential) -> Any:
        creds = Credentials(
            token=None,
            refresh_token=credential.fields["refresh_token"],
            token_uri=TOKEN_URI,
            client_id=credential.fields["client_id"],
            client_secret=credential.fields["client_secret"],
            scopes=DRIVE_SCOPES,
        )
        return build("drive", "v3", credentials=creds, cache_discovery=False)

    def store(
        self,
        payload: Payload,
        filename: str,
        credential: ProviderCredential,
        *,
        content_type: str | None = None,
        folder: str = "uploads",
    ) -> StoredObject:
        # Drive places files by folder id, so the credential's folder wins over
        # the folder name hint.
        metadata: dict[str, Any] = {"name": unique_object_name(filename, keep_extension=True)}
        folder_id = credential.get("folder_id")
        if folder_id:
            metadata["parents"] = [folder_id]

        try:
            service = self._service(credential)
            media = MediaIoBaseUpload(
                as_stream(payload),
                mimetype=guess_content_type(filename, content_type),
                resumable=False,
            )
            created = (
                service.files()
                .create(body=metadata, media_body=media, fields="id, webViewLink, webContentLink")
                .execute()
            )
        except Exception as exc:
            raise ProviderError(credential.name, _detail(exc)) from exc

        file_id = created["id"]
        try:
            service.permissions().create(
                fileId=file_id,
                body={"type": "anyone", "role": "reader"},
            ).execute()
        except Exception as exc:
            self._discard(service, file_id, credential)
            raise ProviderError(credential.name, f"stored but could not be made public: {_detail(exc)}") from exc

        url = created.get("webContentLink") or f"https://drive.google.com/uc?id={file_id}&export=download"
        return StoredObject(url=url, asset_id=file_id)

    def _discard(self, service: Any, file_id: str, credential: ProviderCredential) -> None:
        try:
            service.files().delete(fileId=file_id).execute()
        except Exception as exc:
            logger.warning(
                "[GoogleDrive] Could not delete private orphan {file_id} on {account}: {error}",
                file_id=file_id,
                account=credential.name,
                error=_detail(exc),
            )

    def usage(self, credential: ProviderCredential) -> dict[str, Any] | None:
        try:
            about = self._service(credential).about().get(fields="storageQuota").execute()
        except Exception as exc:
            raise ProviderError(credential.name, _detail(exc)) from exc

        quota = about.get("storageQuota") or {}
        stats: dict[str, Any] = {}
        if quota.get("usage") is not None:
            stats["storage_used_gb"] = round(int(quota["usage"]) / GIB, 2)
        if quota.get("limit") is not None:
            stats["storage_limit_gb"] = round(int(quota["limit"]) / GIB, 2)
        return stats


__all__ = ["GoogleDriveBackend"]
