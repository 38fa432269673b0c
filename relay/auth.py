"""Upload key validation."""

from __future__ import annotations

import hashlib
import hmac
from datetime import datetime, timezone

from loguru import logger

from relay.exceptions import ServerMisconfiguredError, UnauthorizedError


def keys_match(provided: str, expected: str) -> bool:
    """Compare two keys in time independent of their length and content.

    Both sides are reduced to fixed-length SHA-256 digests first, so neither a
    length difference nor the position of the first differing byte changes
    the amount of work done.
    """
    provided_digest = hashlib.sha256(provided.encode("utf-8")).digest()
    expected_digest = hashlib.sha256(expected.encode("utf-8")).digest()
    return hmac.compare_digest(provided_digest, expected_digest)


def verify_upload_key(provided: str | None, expected: str | None, *, origin: str = "unknown") -> None:
    """Authorize an upload request or raise.

    Raises:
        ServerMisconfiguredError: No expected key is configured.
        UnauthorizedError: The key is missing (``reason="missing"``) or does
            not match (``reason="invalid"``).
    """
    if not expected:
        logger.error("Upload key is not configured on the server")
        raise ServerMisconfiguredError("Server configuration error")

    candidate = (provided or "").strip()
    if not candidate:
        _log_failure(origin, "missing")
        raise UnauthorizedError("missing")

    if not keys_match(candidate, expected):
        _log_failure(origin, "invalid")
        raise UnauthorizedError("invalid")


def _log_failure(origin: str, reason: str) -> None:
    logger.warning(
        "[AUTH FAIL] IP: {origin} - {timestamp} ({reason} key)",
        origin=origin,
        timestamp=datetime.now(timezone.utc).isoformat(),
        reason=reason,
    )


__all__ = ["keys_match", "verify_upload_key"]
