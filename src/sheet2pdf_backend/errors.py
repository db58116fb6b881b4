"""
Exception hierarchy for the conversion service.

Every failure a request can hit maps to one class here. Each class carries the
HTTP status and the message shown to the client; the detailed cause stays in
the exception chain and in the server logs.
"""

from __future__ import annotations

from fastapi import HTTPException

GENERIC_FAILURE_MESSAGE = "Failed to convert file."


class Sheet2PdfError(Exception):
    """Base class for all service errors."""

    status_code: int = 500
    public_message: str = GENERIC_FAILURE_MESSAGE
    # set by the pipeline to the last stage completed before the failure
    last_stage = None

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)


class ConfigurationError(Sheet2PdfError):
    """A required setting is missing or invalid. Raised at startup only."""


class InvalidUpload(Sheet2PdfError):
    """The request did not carry an acceptable spreadsheet."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        # validation messages are safe to show as-is
        self.public_message = message


class NormalizationError(Sheet2PdfError):
    """The spreadsheet could not be parsed or written back."""

    status_code = 422
    public_message = "The uploaded spreadsheet could not be read."


class ConversionError(Sheet2PdfError):
    """The conversion engine failed or produced no output."""

    status_code = 500

    def __init__(self, message: str | None = None, stdout: str = "", stderr: str = "") -> None:
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr


class ConversionTimeout(ConversionError):
    """The conversion engine did not finish within the configured time."""

    status_code = 504
    public_message = "Conversion took too long and was cancelled."


class CacheError(Sheet2PdfError):
    """Object storage failed for a reason other than a missing key."""

    status_code = 502


class UploadTooLarge(HTTPException):
    """
    The upload exceeds the configured size ceiling.

    This derives from HTTPException rather than Sheet2PdfError because it can be
    raised from inside the ASGI receive channel while FastAPI is parsing the
    form, and FastAPI only lets HTTPException through that step unchanged.
    """

    def __init__(self, max_bytes: int) -> None:
        self.max_bytes = max_bytes
        self.public_message = f"File size exceeds {format_megabytes(max_bytes)} limit."
        super().__init__(status_code=413, detail=self.public_message)


def format_megabytes(num_bytes: int) -> str:
    megabytes = num_bytes / (1024 * 1024)
    if megabytes >= 1 and megabytes == int(megabytes):
        return f"{int(megabytes)}MB"
    if megabytes >= 1:
        return f"{megabytes:.1f}MB"
    return f"{num_bytes / 1024:.0f}KB"
