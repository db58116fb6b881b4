"""
Request pipeline for spreadsheet to PDF conversion.

This module drives a single upload through every stage:
- Validation of the declared filename and content type
- Content identification (SHA-256 of the upload)
- Cache lookup, returning a presigned link on a hit
- Staging the upload into a request-scoped temporary directory
- Print-layout normalization and conversion
- Storing the PDF in the cache and linking to it, or handing it back inline

The ConversionPipeline class holds no per-request state, so one instance is
shared by all requests of the process.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from contextlib import ExitStack
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import BinaryIO, Callable, Optional

from .cache import S3ArtifactCache
from .checksum import compute_checksum
from .configuration import XLSX_CONTENT_TYPE, XLSX_EXTENSION, Settings
from .converter import LibreOfficeConverter
from .errors import InvalidUpload, Sheet2PdfError
from .models import ConversionStage
from .normalizer import normalize_workbook
from .utils import ensure_directory, pdf_filename

logger = logging.getLogger(__name__)


@dataclass
class UploadedDocument:
    """
    A spreadsheet as received from the client.

    Attributes:
        stream: Seekable binary stream with the upload body
        filename: Filename declared by the client
        content_type: MIME type declared by the client
    """

    stream: Optional[BinaryIO]
    filename: Optional[str]
    content_type: Optional[str]


@dataclass
class ConversionOutcome:
    """
    Result of a successful pipeline run.

    In cache mode url and expires_at are set. In inline mode pdf_path points at
    the converted file inside the request's temporary directory, and the caller
    must call release() once the file has been sent.

    Attributes:
        checksum: Content identifier of the uploaded spreadsheet
        filename: Download name of the PDF (upload basename + ".pdf")
        cache_hit: True if no conversion was needed
        url: Presigned link to the cached PDF
        expires_at: When the link stops working (UTC)
        pdf_path: Converted file on local disk (inline mode)
    """

    checksum: str
    filename: str
    cache_hit: bool
    url: Optional[str] = None
    expires_at: Optional[datetime] = None
    pdf_path: Optional[Path] = None
    _release: Optional[Callable[[], None]] = None

    @property
    def is_inline(self) -> bool:
        return self.pdf_path is not None

    def release(self) -> None:
        """Delete the temporary directory backing pdf_path, if any."""
        if self._release is not None:
            release, self._release = self._release, None
            release()


class ConversionPipeline:
    """
    Coordinates checksum, cache, normalizer and converter for one upload.

    Attributes:
        settings: Process settings (limits, cache switch, link lifetime)
        converter: Conversion engine wrapper
        cache: Artifact cache, required when caching is enabled
    """

    def __init__(
        self,
        settings: Settings,
        converter: LibreOfficeConverter,
        cache: Optional[S3ArtifactCache] = None,
        normalizer: Callable[[Path], Path] = normalize_workbook,
    ) -> None:
        if settings.cache.enabled and cache is None:
            raise ValueError("An artifact cache is required when caching is enabled")
        self.settings = settings
        self.converter = converter
        self.cache = cache if settings.cache.enabled else None
        self.normalizer = normalizer

    @property
    def caching_enabled(self) -> bool:
        return self.cache is not None

    @staticmethod
    def validate(upload: UploadedDocument) -> None:
        """
        Check the declared filename and content type of an upload.

        Only the declarations are checked, not the bytes; a file that lies
        about its type fails later, during normalization.

        Raises:
            InvalidUpload: If no file was sent or it is not an .xlsx spreadsheet
        """
        if upload.stream is None or not upload.filename:
            raise InvalidUpload("No file was uploaded or file is invalid.")
        if not upload.filename.lower().endswith(XLSX_EXTENSION) or upload.content_type != XLSX_CONTENT_TYPE:
            raise InvalidUpload("Invalid file format. Only .xlsx spreadsheets are supported.")

    def run(self, upload: UploadedDocument) -> ConversionOutcome:
        """
        Process an upload from validation to a link or an inline PDF.

        Args:
            upload: The received spreadsheet

        Returns:
            ConversionOutcome describing where the PDF can be fetched

        Raises:
            InvalidUpload: If validation fails
            UploadTooLarge: If the upload exceeds the configured ceiling
            Sheet2PdfError: Subclasses for normalization, conversion and cache
                failures; nothing is retried
        """
        stage = ConversionStage.RECEIVED
        checksum = None
        try:
            self.validate(upload)
            stage = self._advance(ConversionStage.VALIDATED, upload.filename)

            checksum, size = compute_checksum(
                upload.stream,
                chunk_size=self.settings.upload.chunk_bytes,
                max_bytes=self.settings.upload.max_bytes,
            )
            filename = pdf_filename(upload.filename or "")
            logger.info(f"Upload {upload.filename!r} is {size} bytes, checksum {checksum}")

            if self.caching_enabled and self.cache.exists(checksum):
                stage = self._advance(ConversionStage.CACHE_HIT, checksum)
                return self._link(checksum, filename, cache_hit=True)
            stage = self._advance(ConversionStage.CACHE_MISS, checksum)

            with ExitStack() as stack:
                workdir = Path(stack.enter_context(self._workspace(checksum)))

                source = self._stage(upload.stream, workdir / f"{checksum}{XLSX_EXTENSION}")
                stage = self._advance(ConversionStage.STAGED, checksum)

                self.normalizer(source)
                stage = self._advance(ConversionStage.NORMALIZED, checksum)

                pdf_path = self.converter.convert(source, workdir)
                stage = self._advance(ConversionStage.CONVERTED, checksum)

                if not self.caching_enabled:
                    # the response owns the directory from here on
                    release = stack.pop_all().close
                    stage = self._advance(ConversionStage.LINKED, checksum)
                    return ConversionOutcome(
                        checksum=checksum,
                        filename=filename,
                        cache_hit=False,
                        pdf_path=pdf_path,
                        _release=release,
                    )

                self.cache.store(checksum, pdf_path)
                stage = self._advance(ConversionStage.STORED, checksum)

            return self._link(checksum, filename, cache_hit=False)
        except Sheet2PdfError as exc:
            logger.error(f"Conversion failed after stage {stage.value} (checksum={checksum}): {exc}")
            self._advance(ConversionStage.FAILED, checksum)
            exc.last_stage = stage
            raise
        except OSError as exc:
            logger.exception(f"I/O failure after stage {stage.value} (checksum={checksum})")
            self._advance(ConversionStage.FAILED, checksum)
            error = Sheet2PdfError(f"I/O failure after stage {stage.value}: {exc}")
            error.last_stage = stage
            raise error from exc

    def _advance(self, stage: ConversionStage, subject: Optional[str]) -> ConversionStage:
        logger.info(f"[{subject}] {stage.value}")
        return stage

    def _workspace(self, checksum: str) -> tempfile.TemporaryDirectory:
        root = self.settings.workdir.root
        if root:
            ensure_directory(Path(root))
        return tempfile.TemporaryDirectory(prefix=f"sheet2pdf-{checksum[:12]}-", dir=root)

    def _stage(self, stream: BinaryIO, destination: Path) -> Path:
        stream.seek(0)
        with destination.open("wb") as buffer:
            shutil.copyfileobj(stream, buffer, self.settings.upload.chunk_bytes)
        return destination

    def _link(self, checksum: str, filename: str, cache_hit: bool) -> ConversionOutcome:
        ttl = self.settings.cache.link_ttl_seconds
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl)
        url = self.cache.issue_access_link(checksum, ttl, filename=filename)
        self._advance(ConversionStage.LINKED, checksum)
        return ConversionOutcome(
            checksum=checksum,
            filename=filename,
            cache_hit=cache_hit,
            url=url,
            expires_at=expires_at,
        )
