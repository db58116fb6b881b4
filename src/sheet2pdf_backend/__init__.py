"""
sheet2pdf backend - Excel to PDF conversion service

This package provides a FastAPI web service that converts uploaded .xlsx
spreadsheets to PDF with a headless LibreOffice. It enables:

- Upload form and JSON API for spreadsheet uploads
- Content-addressed caching of converted PDFs in S3
- Time-limited presigned download links
- Print-layout normalization so sheets fit the page width

Key Components:
    - main: FastAPI application factory and HTTP endpoints
    - pipeline: Per-request orchestration of all conversion stages
    - checksum: SHA-256 content identifiers
    - cache: S3 artifact cache and presigned links
    - normalizer: openpyxl page-setup rewrite
    - converter: LibreOffice subprocess invocation
    - middleware: Request body size guard
    - configuration: Settings loading and validation

Usage:
    Run the API server with:
        uvicorn sheet2pdf_backend.main:create_app --factory --host 0.0.0.0 --port 8000

    Required environment:
        LIBREOFFICE_PATH  Conversion engine binary (e.g. soffice)
        BUCKET_NAME       S3 bucket for cached PDFs (unless CACHE_ENABLED=false)
"""
