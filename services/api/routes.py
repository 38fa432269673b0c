from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, File, Form, Header, Request, UploadFile
from loguru import logger

from relay.auth import verify_upload_key
from relay.exceptions import MissingFileError, ValidationError
from relay.orchestrator import UploadOrchestrator
from relay.settings import Settings
from relay.staging import staged_upload
from relay.status import collect_pool_status
from services.api.schemas import ErrorResponse, StatusResponse, UploadResponse

router = APIRouter()

UPLOAD_ERRORS: dict[int | str, dict] = {
    400: {"model": ErrorResponse, "description": "No file, empty file, malformed input or file too large"},
    401: {"model": ErrorResponse, "description": "Missing or invalid upload key"},
    429: {"model": ErrorResponse, "description": "Too many upload attempts"},
    500: {"model": ErrorResponse, "description": "Every provider failed or the server is misconfigured"},
}
STATUS_ERRORS: dict[int | str, dict] = {
    401: UPLOAD_ERRORS[401],
    500: {"model": ErrorResponse, "description": "Server is misconfigured"},
}


def _client_origin(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.post("/upload", response_model=UploadResponse, responses=UPLOAD_ERRORS, tags=["upload"])
async def upload_file(
    request: Request,
    file: Annotated[UploadFile | None, File(description="File to relay to cloud storage")] = None,
    upload_key: Annotated[str | None, Form(alias="uploadKey")] = None,
    x_upload_key: Annotated[str | None, Header()] = None,
) -> UploadResponse:
    settings: Settings = request.app.state.settings
    orchestrator: UploadOrchestrator = request.app.state.orchestrator

    verify_upload_key(x_upload_key or upload_key, settings.server.upload_key, origin=_client_origin(request))

    if file is None or not file.filename:
        raise MissingFileError("No file provided")

    async with staged_upload(
        file,
        max_bytes=settings.server.max_file_size_bytes,
        strategy=settings.server.staging,
        temp_dir=settings.server.temp_dir,
        filename=file.filename,
        tracker=request.app.state.staging_tracker,
    ) as staged:
        if staged.size == 0:
            raise ValidationError("The uploaded file is empty")
        logger.info("Relaying {filename} ({size} bytes)", filename=file.filename, size=staged.size)
        result = await orchestrator.upload(staged, file.filename, file.content_type)
        size = staged.size

    return UploadResponse(
        message=f"Uploaded via {result.service}",
        asset_url=result.url,
        asset_id=result.asset_id,
        service=result.service,
        filename=file.filename,
        size=size,
    )


@router.get(
    "/status",
    response_model=StatusResponse,
    response_model_exclude_none=True,
    responses=STATUS_ERRORS,
    tags=["meta"],
)
async def storage_status(
    request: Request,
    x_upload_key: Annotated[str | None, Header()] = None,
) -> StatusResponse:
    settings: Settings = request.app.state.settings
    orchestrator: UploadOrchestrator = request.app.state.orchestrator

    verify_upload_key(x_upload_key, settings.server.upload_key, origin=_client_origin(request))

    pool = orchestrator.pool
    accounts = await collect_pool_status(
        pool,
        orchestrator.backends,
        timeout=settings.upload.attempt_timeout_seconds,
    )
    return StatusResponse(
        accounts_active=len(pool),
        next_rr_account=pool.next_name or "N/A",
        topology=orchestrator.topology,
        pool=accounts,
    )


__all__ = ["router"]
