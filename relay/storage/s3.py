from __future__ import annotations

from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError
from loguru import logger

from relay.exceptions import ProviderError
from relay.models import ProviderCredential, StoredObject
from relay.storage import Payload, as_stream, guess_content_type, unique_object_name


def _detail(exc: Exception) -> str:
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        return f"{error.get('Code', 'ClientError')}: {error.get('Message', exc)}"
    return f"{type(exc).__name__}: {exc}"


class S3Backend:
    """S3-compatible object storage.

    Objects are private on upload and are made readable with a ``public-read``
    ACL afterwards.
    """

    kind = "s3"
    required_fields = ("bucket", "access_key_id", "secret_access_key")

    def _client(self, credential: ProviderCredential) -> Any:
        region = credential.get("region")
        session = boto3.session.Session(
            aws_access_key_id=credential.fields["access_key_id"],
            aws_secret_access_key=credential.fields["secret_access_key"],
            region_name=region,
        )
        return session.client(
            "s3",
            endpoint_url=credential.get("endpoint_url"),
            config=Config(signature_version="s3v4"),
        )

    @staticmethod
    def _key(folder: str, filename: str) -> str:
        prefix = folder.strip("/")
        name = unique_object_name(filename, keep_extension=True)
        return f"{prefix}/{name}" if prefix else name

    @staticmethod
    def _public_url(credential: ProviderCredential, key: str) -> str:
        base = credential.get("public_base_url")
        if base:
            return f"{base.rstrip('/')}/{key}"
        bucket = credential.fields["bucket"]
        endpoint = credential.get("endpoint_url")
        if endpoint:
            return f"{endpoint.rstrip('/')}/{bucket}/{key}"
        region = credential.get("region")
        if region:
            return f"https://{bucket}.s3.{region}.amazonaws.com/{key}"
        return f"https://{bucket}.s3.amazonaws.com/{key}"

    def store(
        self,
        payload: Payload,
        filename: str,
        credential: ProviderCredential,
        *,
        content_type: str | None = None,
        folder: str = "uploads",
    ) -> StoredObject:
        bucket = credential.fields["bucket"]
        key = self._key(folder, filename)
        try:
            client = self._client(credential)
            client.put_object(
                Bucket=bucket,
                Key=key,
                Body=as_stream(payload),
                ContentType=guess_content_type(filename, content_type),
            )
        except Exception as exc:
            # Includes ValueError from botocore for a malformed endpoint_url.
            raise ProviderError(credential.name, _detail(exc)) from exc

        try:
            client.put_object_acl(Bucket=bucket, Key=key, ACL="public-read")
        except Exception as exc:
            self._discard(client, bucket, key, credential)
            raise ProviderError(credential.name, f"stored but could not be made public: {_detail(exc)}") from exc

        return StoredObject(url=self._public_url(credential, key), asset_id=key)

    def _discard(self, client: Any, bucket: str, key: str, credential: ProviderCredential) -> None:
        try:
            client.delete_object(Bucket=bucket, Key=key)
        except Exception as exc:
            logger.warning(
                "[S3] Could not delete private orphan {key} on {account}: {error}",
                key=key,
                account=credential.name,
                error=_detail(exc),
            )

    def usage(self, credential: ProviderCredential) -> dict[str, Any] | None:
        return None


__all__ = ["S3Backend"]
