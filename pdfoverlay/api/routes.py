"""API routes: compose overlays into a PDF and inspect uploaded PDFs."""

import json
import tempfile
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.background import BackgroundTask

from pdfoverlay.config import settings
from pdfoverlay.models.overlay import ComposeRequest, PageInfo, PdfInfo, merged_source
from pdfoverlay.services.compositor import (
    CompositeError,
    Compositor,
    OverlayApplyFailed,
    cleanup_temp_files,
)
from pdfoverlay.services.pdf_engine import FitzPdfEngine, PdfEngineError
from pdfoverlay.utils.logger import get_logger
from pdfoverlay.utils.validators import is_pdf, sanitize_filename

logger = get_logger("api")

router = APIRouter(tags=["compose"])

# ---------------------------------------------------------------------------
# Lazy-initialised services (avoids import-time side-effects)
# ---------------------------------------------------------------------------

_compositor: Compositor | None = None


def _get_compositor() -> Compositor:
    global _compositor
    if _compositor is None:
        _compositor = Compositor()
    return _compositor


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post("/compose", response_class=FileResponse, status_code=status.HTTP_200_OK)
async def compose_pdf(
        file: UploadFile = File(..., description="Source PDF"),
        request_json: str = Form("{}", alias="request", description="ComposeRequest JSON: overlays, pageOrder, hasReordering"),
        merge: Optional[list[UploadFile]] = File(None, description="Extra PDFs whose pages pageOrder references as 'merged:<n>'"),
) -> FileResponse:
    """Burn the overlays into the uploaded PDF and return the result."""
    _validate_upload(file)
    compose_request = _parse_compose_request(request_json)
    content = await _read_pdf_upload(file)
    merged_contents = []
    for extra in merge or []:
        _validate_upload(extra)
        merged_contents.append(await _read_pdf_upload(extra))

    source_path = _write_temp_pdf(content)
    sources = {merged_source(i): _write_temp_pdf(data) for i, data in enumerate(merged_contents)}
    output_path = _new_temp_path(".pdf")
    uploads = [source_path, *sources.values()]
    logger.info(
        f"compose | file='{file.filename}' overlays={len(compose_request.overlays)} "
        f"merged={len(sources)} reorder={compose_request.has_reordering}"
    )

    try:
        result = await run_in_threadpool(
            _get_compositor().compose,
            source_path,
            compose_request.overlays,
            output_path,
            page_order=compose_request.page_order,
            has_reordering=compose_request.has_reordering,
            sources=sources,
        )
    except OverlayApplyFailed as exc:
        cleanup_temp_files([*uploads, output_path])
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.to_dict()) from exc
    except CompositeError as exc:
        cleanup_temp_files([*uploads, output_path])
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except PdfEngineError as exc:
        cleanup_temp_files([*uploads, output_path])
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=f"Invalid PDF: {exc}") from exc
    except Exception as exc:
        cleanup_temp_files([*uploads, output_path])
        logger.error(f"Unexpected error in compose: {exc}", exc_info=True)
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Unexpected error: {exc}") from exc

    # Streamed first, deleted after
    leftovers = [*uploads, result.final_path, *result.temp_files]
    base = sanitize_filename(file.filename).rsplit(".", 1)[0]
    return FileResponse(
        result.final_path,
        media_type="application/pdf",
        filename=f"{base}_edited.pdf",
        headers={
            "X-Overlays-Applied": str(result.applied),
            "X-Overlays-Skipped": ",".join(str(s.index) for s in result.skipped),
        },
        background=BackgroundTask(cleanup_temp_files, leftovers),
    )


@router.post("/pdf-info", response_model=PdfInfo, response_model_by_alias=True)
async def pdf_info(file: UploadFile = File(..., description="PDF to inspect")) -> PdfInfo:
    """Return page count and page sizes in points."""
    _validate_upload(file)
    content = await _read_pdf_upload(file)
    source_path = _write_temp_pdf(content)
    try:
        sizes = await run_in_threadpool(FitzPdfEngine().get_page_sizes, source_path)
    except PdfEngineError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=f"Invalid PDF: {exc}") from exc
    finally:
        cleanup_temp_files([source_path])

    return PdfInfo(
        page_count=len(sizes),
        pages=[PageInfo(width_pt=size.width, height_pt=size.height) for size in sizes],
    )


# ---------------------------------------------------------------------------
# Shared private helpers
# ---------------------------------------------------------------------------

def _validate_upload(file: UploadFile) -> None:
    """Raise 400 if the uploaded file has no filename."""
    if not file.filename:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="File must have a filename")


def _parse_compose_request(raw: str) -> ComposeRequest:
    """Validate the request JSON, raising 422 with pydantic's error list."""
    try:
        return ComposeRequest.model_validate_json(raw or "{}")
    except PydanticValidationError as exc:
        logger.warning(f"Invalid compose request: {exc.error_count()} errors")
        raise HTTPException(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=json.loads(exc.json(include_url=False)),
        ) from exc


async def _read_pdf_upload(file: UploadFile) -> bytes:
    """Read file bytes, raising appropriate HTTP errors on failure."""
    try:
        content = await file.read()
    except Exception as exc:
        logger.error(f"Failed to read upload: {exc}")
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to read uploaded file") from exc

    if not content:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Uploaded file is empty")
    if len(content) > settings.max_upload_mb * 1024 * 1024:
        raise HTTPException(
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Uploaded file exceeds {settings.max_upload_mb} MB",
        )
    if not is_pdf(content):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Uploaded file is not a PDF")
    return content


def _new_temp_path(suffix: str) -> Path:
    temp_dir = settings.get_temp_dir()
    temp_dir.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(dir=temp_dir, prefix="upload-", suffix=suffix, delete=False) as f:
        return Path(f.name)


def _write_temp_pdf(content: bytes) -> Path:
    path = _new_temp_path(".pdf")
    path.write_bytes(content)
    return path
