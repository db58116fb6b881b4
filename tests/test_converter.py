"""
Tests for the conversion engine wrapper.

The engine is replaced by small shell scripts that honour the same command
line contract as LibreOffice.
"""

import time

import pytest

from conftest import make_workbook_bytes, posix_only, write_engine
from sheet2pdf_backend.configuration import ConverterSettings
from sheet2pdf_backend.converter import LibreOfficeConverter, expected_output_path
from sheet2pdf_backend.errors import ConversionError, ConversionTimeout
from sheet2pdf_backend.normalizer import normalize_workbook

# writes <outdir>/<stem>.pdf for the last argument, like soffice --convert-to pdf
WORKING_ENGINE = r"""
outdir=""
while [ $# -gt 1 ]; do
  if [ "$1" = "--outdir" ]; then outdir="$2"; shift; fi
  shift
done
name=$(basename "$1")
printf '%%PDF-1.4\n%%fake engine output\n' > "$outdir/${name%.*}.pdf"
"""

# exits 0 but leaves a zero-byte PDF
EMPTY_OUTPUT_ENGINE = r"""
outdir=""
while [ $# -gt 1 ]; do
  if [ "$1" = "--outdir" ]; then outdir="$2"; shift; fi
  shift
done
name=$(basename "$1")
: > "$outdir/${name%.*}.pdf"
"""


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "input" / "abc123.xlsx"
    path.parent.mkdir()
    path.write_bytes(make_workbook_bytes())
    return path


@pytest.fixture
def outdir(tmp_path):
    path = tmp_path / "output"
    path.mkdir()
    return path


class TestBuildCommand:
    def test_fixed_argument_contract(self, tmp_path):
        converter = LibreOfficeConverter("/opt/libreoffice24.8/program/soffice")
        command = converter.build_command(tmp_path / "doc.xlsx", tmp_path)
        assert command == [
            "/opt/libreoffice24.8/program/soffice",
            "--headless",
            "--invisible",
            "--nodefault",
            "--view",
            "--nolockcheck",
            "--nologo",
            "--norestore",
            "--convert-to",
            "pdf",
            "--outdir",
            str(tmp_path),
            str(tmp_path / "doc.xlsx"),
        ]

    def test_paths_with_spaces_stay_single_arguments(self, tmp_path):
        converter = LibreOfficeConverter("soffice")
        command = converter.build_command(tmp_path / "my doc.xlsx", tmp_path / "out dir")
        assert command[-1].endswith("my doc.xlsx")
        assert command[-2].endswith("out dir")

    def test_expected_output_path(self, tmp_path):
        assert expected_output_path(tmp_path / "abc.xlsx", tmp_path / "out") == tmp_path / "out" / "abc.pdf"

    def test_from_settings(self):
        converter = LibreOfficeConverter.from_settings(ConverterSettings(engine_path="soffice", timeout_seconds=12))
        assert converter.engine_path == "soffice"
        assert converter.timeout_seconds == 12

    def test_from_settings_requires_engine(self):
        with pytest.raises(ValueError):
            LibreOfficeConverter.from_settings(ConverterSettings(engine_path=None))


@posix_only
class TestConvert:
    def test_success_returns_non_empty_pdf(self, engine_dir, source, outdir):
        engine = write_engine(engine_dir / "soffice", WORKING_ENGINE)
        output = LibreOfficeConverter(str(engine)).convert(source, outdir)
        assert output == outdir / "abc123.pdf"
        assert output.stat().st_size > 0
        assert output.read_bytes().startswith(b"%PDF")

    def test_non_zero_exit_raises(self, engine_dir, source, outdir):
        engine = write_engine(engine_dir / "soffice", 'echo "Error: source file could not be loaded" >&2\nexit 1\n')
        with pytest.raises(ConversionError) as excinfo:
            LibreOfficeConverter(str(engine)).convert(source, outdir)
        assert not isinstance(excinfo.value, ConversionTimeout)
        assert "could not be loaded" in excinfo.value.stderr
        assert not (outdir / "abc123.pdf").exists()

    def test_undecodable_engine_output_raises_conversion_error(self, engine_dir, source, outdir):
        engine = write_engine(engine_dir / "soffice", "printf '\\377\\376 not utf-8\\n' >&2\nexit 1\n")
        with pytest.raises(ConversionError) as excinfo:
            LibreOfficeConverter(str(engine)).convert(source, outdir)
        assert "\ufffd" in excinfo.value.stderr
        assert "not utf-8" in excinfo.value.stderr

    def test_success_without_output_raises(self, engine_dir, source, outdir):
        engine = write_engine(engine_dir / "soffice", "exit 0\n")
        with pytest.raises(ConversionError, match="no output"):
            LibreOfficeConverter(str(engine)).convert(source, outdir)

    def test_empty_output_raises(self, engine_dir, source, outdir):
        engine = write_engine(engine_dir / "soffice", EMPTY_OUTPUT_ENGINE)
        with pytest.raises(ConversionError):
            LibreOfficeConverter(str(engine)).convert(source, outdir)

    def test_missing_engine_raises(self, engine_dir, source, outdir):
        with pytest.raises(ConversionError, match="Could not start"):
            LibreOfficeConverter(str(engine_dir / "does-not-exist")).convert(source, outdir)

    def test_hanging_engine_is_killed(self, engine_dir, source, outdir):
        engine = write_engine(engine_dir / "soffice", "sleep 30\n")
        started = time.monotonic()
        with pytest.raises(ConversionTimeout):
            LibreOfficeConverter(str(engine), timeout_seconds=1).convert(source, outdir)
        assert time.monotonic() - started < 10

    def test_timeout_is_a_conversion_error(self):
        assert issubclass(ConversionTimeout, ConversionError)
        assert ConversionTimeout.status_code == 504

    def test_warm_up(self, engine_dir, tmp_path):
        engine = write_engine(engine_dir / "soffice", WORKING_ENGINE)
        assert LibreOfficeConverter(str(engine)).warm_up(tmp_path) is True
        assert list(tmp_path.glob("sheet2pdf-warmup-*")) == []

    def test_failed_warm_up_is_not_fatal(self, engine_dir, tmp_path):
        engine = write_engine(engine_dir / "soffice", "exit 77\n")
        assert LibreOfficeConverter(str(engine)).warm_up(tmp_path) is False


class TestRealEngine:
    """Runs only when LIBREOFFICE_PATH points at an installed LibreOffice."""

    def test_normalized_workbook_converts(self, libreoffice_path, source, outdir):
        normalize_workbook(source)
        output = LibreOfficeConverter(libreoffice_path, timeout_seconds=120).convert(source, outdir)
        assert output.read_bytes().startswith(b"%PDF")
