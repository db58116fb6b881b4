from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, Optional, Union

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, Response
from fastapi.templating import Jinja2Templates
from starlette.background import BackgroundTask

from .cache import S3ArtifactCache
from .configuration import PDF_CONTENT_TYPE, XLSX_CONTENT_TYPE, Settings, load_settings
from .converter import LibreOfficeConverter
from .errors import GENERIC_FAILURE_MESSAGE, Sheet2PdfError, UploadTooLarge, format_megabytes
from .logging_config import configure_logging
from .middleware import BodySizeLimitMiddleware
from .models import ConversionResponse, ConversionStage, ErrorResponse
from .pipeline import ConversionOutcome, ConversionPipeline, UploadedDocument
from .utils import content_disposition

logger = logging.getLogger(__name__)

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))

API_PREFIX = "/api/"


def build_pipeline(settings: Settings) -> ConversionPipeline:
    converter = LibreOfficeConverter.from_settings(settings.converter)
    cache = S3ArtifactCache.from_settings(settings.cache) if settings.cache.enabled else None
    return ConversionPipeline(settings, converter, cache)


def get_pipeline(request: Request) -> ConversionPipeline:
    return request.app.state.pipeline


def render_page(request: Request, status_code: int = 200, **context: Any) -> HTMLResponse:
    settings: Settings = request.app.state.settings
    context.setdefault("error", None)
    context.setdefault("url", None)
    context.update(
        accept_type=XLSX_CONTENT_TYPE,
        max_size=format_megabytes(settings.upload.max_bytes),
    )
    return templates.TemplateResponse(request, "index.html", context, status_code=status_code)


def error_response(
    request: Request, status_code: int, message: str, last_stage: Optional[ConversionStage] = None
) -> Response:
    if request.url.path.startswith(API_PREFIX):
        payload = ErrorResponse(detail=message, last_stage=last_stage)
        return JSONResponse(status_code=status_code, content=payload.model_dump(mode="json"))
    return render_page(request, status_code=status_code, error=message)


async def handle_service_error(request: Request, exc: Sheet2PdfError) -> Response:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc!r}", exc_info=exc)
    return error_response(request, exc.status_code, exc.public_message, exc.last_stage)


async def handle_upload_too_large(request: Request, exc: UploadTooLarge) -> Response:
    return error_response(request, exc.status_code, exc.public_message)


async def handle_unexpected_error(request: Request, exc: Exception) -> Response:
    logger.error(f"{request.method} {request.url.path} failed unexpectedly: {exc!r}", exc_info=exc)
    return error_response(request, 500, GENERIC_FAILURE_MESSAGE)


def pdf_response(outcome: ConversionOutcome) -> FileResponse:
    return FileResponse(
        outcome.pdf_path,
        media_type=PDF_CONTENT_TYPE,
        headers={"Content-Disposition": content_disposition(outcome.filename)},
        background=BackgroundTask(outcome.release),
    )


def _run(pipeline: ConversionPipeline, uploaded_file: Optional[UploadFile]) -> ConversionOutcome:
    upload = UploadedDocument(
        stream=uploaded_file.file if uploaded_file else None,
        filename=uploaded_file.filename if uploaded_file else None,
        content_type=uploaded_file.content_type if uploaded_file else None,
    )
    return pipeline.run(upload)


def create_app(settings: Settings | None = None, pipeline: ConversionPipeline | None = None) -> FastAPI:
    """
    Build the FastAPI application.

    Settings are loaded (and validated) here, so a missing LIBREOFFICE_PATH or
    BUCKET_NAME stops the process before it serves a request.

    Args:
        settings: Pre-built settings (default: load_settings())
        pipeline: Pre-built pipeline (default: built from settings)
    """
    settings = settings or load_settings()
    configure_logging(settings.logging.level)
    pipeline = pipeline or build_pipeline(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.converter.prewarm:
            await run_in_threadpool(pipeline.converter.warm_up, settings.workdir.root)
        logger.info(
            f"Converter ready (cache {'enabled' if pipeline.caching_enabled else 'disabled'}, "
            f"max upload {format_megabytes(settings.upload.max_bytes)})"
        )
        yield

    app = FastAPI(title="Excel to PDF converter", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.pipeline = pipeline

    app.add_exception_handler(Sheet2PdfError, handle_service_error)
    app.add_exception_handler(UploadTooLarge, handle_upload_too_large)
    app.add_exception_handler(Exception, handle_unexpected_error)
    app.add_middleware(
        BodySizeLimitMiddleware,
        max_upload_bytes=settings.upload.max_bytes,
        on_reject=handle_upload_too_large,
    )

    @app.get("/healthz")
    def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/", response_class=HTMLResponse)
    def upload_form(request: Request) -> HTMLResponse:
        return render_page(request)

    @app.post("/", response_class=HTMLResponse)
    def convert_form(
        request: Request,
        uploaded_file: Optional[UploadFile] = File(None),
        manager: ConversionPipeline = Depends(get_pipeline),
    ) -> Response:
        outcome = _run(manager, uploaded_file)
        if outcome.is_inline:
            return pdf_response(outcome)
        return render_page(
            request,
            url=outcome.url,
            filename=outcome.filename,
            cache_hit=outcome.cache_hit,
            expires_at=outcome.expires_at,
        )

    @app.post(
        "/api/conversions",
        response_model=ConversionResponse,
        responses={200: {"content": {PDF_CONTENT_TYPE: {}}}, 400: {"model": ErrorResponse}, 413: {"model": ErrorResponse}},
    )
    def convert_api(
        uploaded_file: Optional[UploadFile] = File(None),
        manager: ConversionPipeline = Depends(get_pipeline),
    ) -> Union[ConversionResponse, FileResponse]:
        outcome = _run(manager, uploaded_file)
        if outcome.is_inline:
            return pdf_response(outcome)
        return ConversionResponse(
            checksum=outcome.checksum,
            filename=outcome.filename,
            cache_hit=outcome.cache_hit,
            url=outcome.url,
            expires_at=outcome.expires_at,
        )

    return app


def entry() -> None:
    """Entry point for running the converter with uvicorn."""
    import uvicorn

    uvicorn.run("sheet2pdf_backend.main:create_app", factory=True, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    entry()
