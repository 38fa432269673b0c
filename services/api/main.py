import os
from collections.abc import Mapping
from pathlib import Path

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from relay.exceptions import RelayError
from relay.logging_config import setup_logging
from relay.orchestrator import UploadOrchestrator
from relay.pool import build_credential_pool, pool_kinds
from relay.settings import PROJECT_ROOT, Settings, get_settings
from relay.staging import StagingTracker
from relay.storage import StorageBackend, default_backends
from services.api.exception_handlers import (
    http_exception_handler,
    relay_exception_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from services.api.middleware import RateLimitMiddleware, SecurityHeadersMiddleware
from services.api.routes import router


def _log_pool(settings: Settings, orchestrator: UploadOrchestrator) -> None:
    pool = orchestrator.pool
    configured = {credential.name for credential in pool}
    logger.info(
        "Relay ready: topology={topology}, max file size {size:g} MB, {active} account(s) active",
        topology=orchestrator.topology,
        size=settings.server.max_file_size_mb,
        active=len(pool),
    )
    for kind in pool_kinds(settings):
        for account in settings.providers.accounts_for(kind):
            marker = "configured" if account.name in configured else "not configured"
            logger.info("  {kind}: {name} -> {marker}", kind=kind, name=account.name, marker=marker)


def create_app(
    settings: Settings | None = None,
    backends: Mapping[str, StorageBackend] | None = None,
    *,
    configure_logging: bool = True,
) -> FastAPI:
    if configure_logging:
        json_logging = os.getenv("JSON_LOGGING", "false").lower() in {"true", "1", "yes"}
        log_level = os.getenv("LOG_LEVEL", "INFO")
        log_file = os.getenv("LOG_FILE")
        setup_logging(
            level=log_level,
            json_format=json_logging,
            log_file=Path(log_file) if log_file else None,
        )

    settings = settings or get_settings()
    backends = dict(backends) if backends is not None else default_backends()
    pool = build_credential_pool(settings, backends)
    orchestrator = UploadOrchestrator(
        pool,
        backends,
        topology=settings.upload.topology,
        attempt_timeout=settings.upload.attempt_timeout_seconds,
        folder=settings.upload.folder,
    )

    app = FastAPI(
        title="Cloud Relay",
        version="0.1.0",
        description="Authenticated file upload relay to pooled cloud storage accounts",
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.state.staging_tracker = StagingTracker()

    if settings.rate_limit.enabled:
        app.add_middleware(
            RateLimitMiddleware,
            max_requests=settings.rate_limit.max_requests,
            window_seconds=settings.rate_limit.window_seconds,
            paths=settings.rate_limit.paths,
        )

    app.add_middleware(SecurityHeadersMiddleware)

    # CORS middleware - add LAST so it executes FIRST
    if settings.server.cors_origins:
        logger.info("CORS allowed origins: {origins}", origins=sorted(settings.server.cors_origins))
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.server.cors_origins,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    @app.get("/healthz", tags=["meta"])
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    app.add_exception_handler(RelayError, relay_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(router)

    static_dir = Path(settings.static.directory)
    if not static_dir.is_absolute():
        static_dir = PROJECT_ROOT / static_dir
    if static_dir.is_dir():
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")

    _log_pool(settings, orchestrator)
    return app


app = create_app()


__all__ = ["app", "create_app"]
