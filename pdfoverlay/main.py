"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pdfoverlay.api.routes import router
from pdfoverlay.config import settings
from pdfoverlay.utils.logger import logger

# Multipart upload endpoints and the usage hint attached to their validation errors
UPLOAD_HINTS = {
    "/api/v1/compose": (
        "Use Content-Type: multipart/form-data. "
        "Required: 'file' (PDF). Optional: 'request' (JSON with overlays, pageOrder, hasReordering), "
        "'merge' (extra PDFs, referenced as source 'merged:0', 'merged:1', ...). "
        "Example: curl -X POST ... -F 'file=@doc.pdf' -F 'request={\"overlays\": []}'"
    ),
    "/api/v1/pdf-info": (
        "Use Content-Type: multipart/form-data. Required: 'file' (PDF). "
        "Example: curl -X POST ... -F 'file=@doc.pdf'"
    ),
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    settings.ensure_directories()
    logger.info("Application startup complete")
    yield
    # Shutdown
    logger.info("Application shutdown")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Burn text, date, image, signature and rectangle overlays into PDF documents.",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(router, prefix="/api/v1")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return 422 with validation details and a hint for upload endpoints."""
    detail = exc.errors()
    payload: dict[str, object] = {"detail": detail}
    hint = UPLOAD_HINTS.get(request.url.path.rstrip("/"))
    if hint is not None:
        ct = request.headers.get("content-type", "")
        if "multipart/form-data" not in ct:
            payload["content_type_received"] = ct or "(none)"
            hint += " Your request had Content-Type: " + (ct or "missing") + "."
        payload["hint"] = hint
    logger.warning("Validation error on %s: %s", request.url.path, detail)
    return JSONResponse(status_code=422, content=jsonable_encoder(payload))


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "status": "operational",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("pdfoverlay.main:app", host=settings.host, port=settings.port, reload=settings.debug)
