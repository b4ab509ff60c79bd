from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, File, Form, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .configuration import get_settings
from .errors import PipelineError, StorageError, ValidationError
from .models import ErrorResponse, HealthResponse
from .pipeline import PipelineCoordinator
from .utils import ensure_directory, sanitize_filename

settings = get_settings()
logging.basicConfig(
    level=settings.server.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="BPA Relay API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

coordinator = PipelineCoordinator(settings)
ensure_directory(settings.storage.upload_root)


def get_coordinator() -> PipelineCoordinator:
    return coordinator


def _error_response(error: PipelineError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


async def _store_upload(file: UploadFile, upload_root: Path) -> Path:
    upload_dir = ensure_directory(upload_root / uuid4().hex)
    destination = upload_dir / sanitize_filename(file.filename or "bundle.tgz")

    try:
        with destination.open("wb") as buffer:
            while chunk := await file.read(8 * 1024 * 1024):
                buffer.write(chunk)
    except OSError:
        destination.unlink(missing_ok=True)
        upload_dir.rmdir()
        raise
    finally:
        await file.close()
    return destination


@app.get("/healthz", response_model=HealthResponse)
def healthcheck() -> HealthResponse:
    return HealthResponse(status="ok")


@app.post(
    "/api/upload",
    responses={
        400: {"model": ErrorResponse, "description": "Missing bundle or requester details"},
        500: {"model": ErrorResponse, "description": "Configuration, bundle or BPA service failure"},
    },
)
async def upload_bundle(
    file: Optional[UploadFile] = File(None),
    email: str = Form(""),
    name: str = Form(""),
    pipeline: PipelineCoordinator = Depends(get_coordinator),
) -> JSONResponse:
    """
    Accept a tech support bundle and return a reference to its BPA report.

    On success the body is ``{"id": ..., "download-url": ...}``; on failure
    it is ``{"error": ...}`` with a 4xx or 5xx status.
    """
    if file is None or not file.filename:
        return _error_response(ValidationError("A tech support bundle file is required"))

    try:
        stored_path = await _store_upload(file, pipeline.settings.storage.upload_root)
    except OSError as exc:
        logger.error(f"Could not store upload {file.filename}: {exc}")
        return _error_response(StorageError("Could not store uploaded bundle"))

    logger.info(f"Received bundle {file.filename} ({stored_path.stat().st_size} bytes)")

    try:
        outcome = await pipeline.run(stored_path, email=email, name=name)
    except Exception as exc:
        logger.error(f"Pipeline crashed: {exc}", exc_info=True)
        return _error_response(PipelineError(str(exc) or "Unexpected error"))

    if outcome.error is not None:
        return _error_response(outcome.error)
    return JSONResponse(content=outcome.unwrap().to_payload())


if settings.server.static_dir.is_dir():
    app.mount("/", StaticFiles(directory=settings.server.static_dir, html=True), name="static")
