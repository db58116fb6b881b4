"""
Utility functions for file system operations and filename handling.

This module provides helper functions for:
- Deriving the PDF download name from an uploaded filename
- Building Content-Disposition header values
- Ensuring directory creation with proper error handling
"""

from __future__ import annotations

import re
from pathlib import Path, PureWindowsPath
from urllib.parse import quote

# Pattern to match characters that are not safe inside a quoted header value
# Allows: alphanumeric characters, spaces, dots, underscores, parentheses and hyphens
SANITIZE_PATTERN = re.compile(r"[^a-zA-Z0-9 ._()-]+")


def pdf_filename(upload_name: str, fallback: str = "document") -> str:
    """
    Derive the name of the converted file from the uploaded filename.

    Any directory part a browser may have sent is dropped, the extension is
    replaced with ".pdf".

    Args:
        upload_name: The filename declared in the multipart upload
        fallback: Stem to use when nothing usable remains

    Returns:
        The basename with a forced ".pdf" suffix

    Example:
        >>> pdf_filename("Q1.xlsx")
        "Q1.pdf"
        >>> pdf_filename("C:\\\\reports\\\\annual report.XLSX")
        "annual report.pdf"
    """
    # Windows browsers may send a full path
    basename = PureWindowsPath(upload_name).name
    stem = Path(basename).stem.strip() or fallback
    return f"{stem}.pdf"


def ascii_filename(filename: str) -> str:
    """
    Reduce a filename to characters that are safe in a quoted header value.

    Args:
        filename: The filename to sanitize

    Returns:
        The filename with unsafe characters replaced by underscores
    """
    cleaned = SANITIZE_PATTERN.sub("_", filename).strip()
    return cleaned or "document.pdf"


def content_disposition(filename: str, disposition: str = "inline") -> str:
    """
    Build a Content-Disposition header value for a download.

    The plain filename parameter is ASCII-only; when the real name contains
    other characters an RFC 5987 filename* parameter carries it as well.

    Example:
        >>> content_disposition("Q1.pdf")
        'inline; filename="Q1.pdf"'
    """
    safe = ascii_filename(filename)
    value = f'{disposition}; filename="{safe}"'
    if safe != filename:
        value += f"; filename*=UTF-8''{quote(filename)}"
    return value


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    This is a safe idempotent operation that won't fail if the directory
    already exists.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining

    Raises:
        OSError: If directory creation fails due to permissions or other I/O errors
    """
    path.mkdir(parents=True, exist_ok=True)
    return path
