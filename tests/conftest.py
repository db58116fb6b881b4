"""
Pytest configuration and fixtures for the sheet2pdf backend tests.
"""

import hashlib
import io
import os
import stat
import sys
from pathlib import Path

import openpyxl
import pytest
from fastapi.testclient import TestClient

from sheet2pdf_backend.configuration import (
    CacheSettings,
    ConverterSettings,
    Settings,
    UploadSettings,
    WorkdirSettings,
)
from sheet2pdf_backend.converter import LibreOfficeConverter, expected_output_path
from sheet2pdf_backend.errors import CacheError
from sheet2pdf_backend.main import create_app
from sheet2pdf_backend.normalizer import read_fit_settings
from sheet2pdf_backend.pipeline import ConversionPipeline

XLSX_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

FAKE_PDF = b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n<< /Root 1 0 R >>\n%%EOF\n"

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="fake engines are shell scripts")


def make_workbook_bytes(sheets=("Q1",), columns=30, rows=40):
    """Build a wide workbook so fit-to-width actually matters."""
    workbook = openpyxl.Workbook()
    workbook.remove(workbook.active)
    for title in sheets:
        worksheet = workbook.create_sheet(title)
        for row in range(1, rows + 1):
            worksheet.append([f"{title}-r{row}c{col}" for col in range(1, columns + 1)])
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


class FakeConverter(LibreOfficeConverter):
    """Writes a small PDF instead of running LibreOffice and records each call."""

    def __init__(self, fail_with=None):
        super().__init__("fake-soffice", timeout_seconds=5)
        self.calls = []
        self.fit_settings_seen = []
        self.fail_with = fail_with

    def convert(self, source, outdir):
        self.calls.append(source)
        self.fit_settings_seen.append(read_fit_settings(source))
        if self.fail_with is not None:
            raise self.fail_with
        output = expected_output_path(source, outdir)
        output.write_bytes(FAKE_PDF)
        return output

    def warm_up(self, workdir=None):
        return True


class FakeArtifactCache:
    """In-memory stand-in for S3ArtifactCache."""

    def __init__(self):
        self.objects = {}
        self.links = []
        self.fail_exists = False
        self.fail_store = False

    def exists(self, identifier):
        if self.fail_exists:
            raise CacheError("head_object failed: AccessDenied")
        return identifier in self.objects

    def store(self, identifier, path, content_type="application/pdf"):
        if self.fail_store:
            raise CacheError("put_object failed")
        self.objects[identifier] = (path.read_bytes(), content_type)

    def issue_access_link(self, identifier, ttl, filename=None):
        self.links.append((identifier, ttl, filename))
        return f"https://artifacts.example.test/{identifier}?expires={ttl}&name={filename}"


def write_engine(path: Path, body: str) -> Path:
    """Write an executable shell script standing in for the conversion engine."""
    path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def xlsx_bytes():
    return make_workbook_bytes()


@pytest.fixture
def xlsx_checksum(xlsx_bytes):
    return hashlib.sha256(xlsx_bytes).hexdigest()


@pytest.fixture
def workdir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def settings(workdir):
    return Settings(
        converter=ConverterSettings(engine_path="fake-soffice", timeout_seconds=5),
        cache=CacheSettings(enabled=True, bucket_name="test-bucket"),
        upload=UploadSettings(max_bytes=1024 * 1024, chunk_bytes=4096),
        workdir=WorkdirSettings(root=str(workdir)),
    )


@pytest.fixture
def inline_settings(settings):
    settings.cache.enabled = False
    settings.cache.bucket_name = None
    return settings


@pytest.fixture
def converter():
    return FakeConverter()


@pytest.fixture
def cache():
    return FakeArtifactCache()


@pytest.fixture
def pipeline(settings, converter, cache):
    return ConversionPipeline(settings, converter, cache)


@pytest.fixture
def inline_pipeline(inline_settings, converter):
    return ConversionPipeline(inline_settings, converter)


@pytest.fixture
def client(settings, pipeline):
    """Create a test client for the cache-backed app."""
    return TestClient(create_app(settings, pipeline))


@pytest.fixture
def inline_client(inline_settings, inline_pipeline):
    """Create a test client for the inline-delivery app."""
    return TestClient(create_app(inline_settings, inline_pipeline))


@pytest.fixture
def engine_dir(tmp_path):
    path = tmp_path / "engines"
    path.mkdir()
    return path


@pytest.fixture
def libreoffice_path():
    """Real LibreOffice binary for integration tests, if one is configured."""
    path = os.environ.get("LIBREOFFICE_PATH")
    if not path:
        pytest.skip("LIBREOFFICE_PATH not set")
    return path
