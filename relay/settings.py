from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from relay.exceptions import ConfigurationError

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "default.yaml"

# Load .env file from project root
_env_path = PROJECT_ROOT / ".env"
if _env_path.exists():
    load_dotenv(_env_path)


class ServerSettings(BaseModel):
    max_file_size_mb: float = Field(5.0, gt=0.0)
    upload_key_env: str = "UPLOAD_SECRET_KEY"
    staging: Literal["memory", "disk"] = "memory"
    temp_dir: str | None = None
    cors_origins: list[str] = Field(default_factory=list)

    @property
    def max_file_size_bytes(self) -> int:
        return int(self.max_file_size_mb * 1024 * 1024)

    @property
    def upload_key(self) -> str:
        return os.getenv(self.upload_key_env, "")


class UploadSettings(BaseModel):
    topology: Literal["round_robin", "fallback"] = "round_robin"
    round_robin_backend: str = "cloudinary"
    fallback_order: list[str] = Field(default_factory=lambda: ["cloudinary", "google_drive", "s3"])
    attempt_timeout_seconds: float | None = Field(60.0, gt=0.0)
    folder: str = "uploads"

    @field_validator("fallback_order")
    @classmethod
    def _dedupe_order(cls, value: list[str]) -> list[str]:
        seen: list[str] = []
        for kind in value:
            kind = kind.strip().lower()
            if kind and kind not in seen:
                seen.append(kind)
        return seen

    @field_validator("round_robin_backend")
    @classmethod
    def _normalise_backend(cls, value: str) -> str:
        return value.strip().lower()


class ProviderAccountConfig(BaseModel):
    """One provider account; ``env`` maps credential fields to environment variables."""

    name: str
    env: dict[str, str]

    def resolve(self) -> dict[str, str]:
        resolved: dict[str, str] = {}
        for field_name, env_name in self.env.items():
            value = os.getenv(env_name, "").strip()
            if value:
                resolved[field_name] = value
        return resolved


def _cloudinary_defaults() -> list[ProviderAccountConfig]:
    return [
        ProviderAccountConfig(
            name=f"Cloudinary-{index}",
            env={
                "cloud_name": f"CLOUDINARY_CLOUD_NAME_{index}",
                "api_key": f"CLOUDINARY_API_KEY_{index}",
                "api_secret": f"CLOUDINARY_API_SECRET_{index}",
            },
        )
        for index in (1, 2, 3)
    ]


def _google_drive_defaults() -> list[ProviderAccountConfig]:
    return [
        ProviderAccountConfig(
            name="GoogleDrive",
            env={
                "client_id": "GOOGLE_DRIVE_CLIENT_ID",
                "client_secret": "GOOGLE_DRIVE_CLIENT_SECRET",
                "refresh_token": "GOOGLE_DRIVE_REFRESH_TOKEN",
                "folder_id": "GOOGLE_DRIVE_FOLDER_ID",
            },
        )
    ]


def _s3_defaults() -> list[ProviderAccountConfig]:
    return [
        ProviderAccountConfig(
            name="S3",
            env={
                "bucket": "S3_BUCKET",
                "access_key_id": "S3_ACCESS_KEY_ID",
                "secret_access_key": "S3_SECRET_ACCESS_KEY",
                "region": "S3_REGION",
                "endpoint_url": "S3_ENDPOINT_URL",
                "public_base_url": "S3_PUBLIC_BASE_URL",
            },
        )
    ]


class ProviderSettings(BaseModel):
    cloudinary: list[ProviderAccountConfig] = Field(default_factory=_cloudinary_defaults)
    google_drive: list[ProviderAccountConfig] = Field(default_factory=_google_drive_defaults)
    s3: list[ProviderAccountConfig] = Field(default_factory=_s3_defaults)

    def accounts_for(self, kind: str) -> list[ProviderAccountConfig]:
        if kind not in type(self).model_fields:
            return []
        return list(getattr(self, kind))


class RateLimitSettings(BaseModel):
    enabled: bool = True
    max_requests: int = Field(20, ge=1)
    window_seconds: int = Field(15 * 60, ge=1)
    paths: list[str] = Field(default_factory=lambda: ["/upload"])


class StaticSettings(BaseModel):
    directory: str = "public"


class Settings(BaseModel):
    server: ServerSettings = Field(default_factory=ServerSettings)
    upload: UploadSettings = Field(default_factory=UploadSettings)
    providers: ProviderSettings = Field(default_factory=ProviderSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    static: StaticSettings = Field(default_factory=StaticSettings)

    @classmethod
    def load(cls, path: Path | None = None) -> "Settings":
        """Load settings from YAML configuration file.

        Args:
            path: Optional path to configuration file. If not provided, uses
                RELAY_CONFIG environment variable or defaults to config/default.yaml.

        Returns:
            Settings instance with loaded configuration. Built-in defaults are
            used when no file was requested and the default file is absent.

        Raises:
            FileNotFoundError: If an explicitly requested file does not exist.
            ConfigurationError: If configuration is invalid.
        """
        requested = path or (Path(os.environ["RELAY_CONFIG"]) if os.getenv("RELAY_CONFIG") else None)
        config_path = requested or DEFAULT_CONFIG_PATH
        if not config_path.exists():
            if requested is not None:
                raise FileNotFoundError(f"Configuration file not found: {config_path}")
            return cls()
        with config_path.open("r", encoding="utf-8") as fp:
            payload = yaml.safe_load(fp) or {}
        try:
            return cls(**payload)
        except Exception as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}", {"path": str(config_path)}) from exc


@lru_cache(maxsize=1)
def get_settings(path: str | None = None) -> Settings:
    return Settings.load(Path(path) if path else None)


__all__ = [
    "Settings",
    "ServerSettings",
    "UploadSettings",
    "ProviderAccountConfig",
    "ProviderSettings",
    "RateLimitSettings",
    "StaticSettings",
    "get_settings",
]
