from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class UploadResponse(BaseModel):
    success: bool = True
    message: str
    asset_url: str = Field(alias="assetUrl")
    asset_id: str = Field(alias="assetId")
    service: str
    filename: str
    size: int

    class Config:
        populate_by_name = True


class ErrorResponse(BaseModel):
    success: bool = False
    message: str


class AccountStatusOut(BaseModel):
    account: str
    backend: str
    status: Literal["ok", "error", "unsupported"]
    storage_used_gb: float | None = None
    storage_limit_gb: float | None = None
    error: str | None = None


class StatusResponse(BaseModel):
    success: bool = True
    accounts_active: int
    next_rr_account: str
    topology: Literal["round_robin", "fallback"]
    pool: list[AccountStatusOut]


__all__ = ["AccountStatusOut", "ErrorResponse", "StatusResponse", "UploadResponse"]
