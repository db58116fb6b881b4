"""
Invocation of the external LibreOffice conversion engine.

The engine runs as a subprocess with a fixed argument list. It is never
retried: a failed or timed-out run fails the request.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import tempfile
from pathlib import Path
from typing import List

from .configuration import ConverterSettings
from .errors import ConversionError, ConversionTimeout

logger = logging.getLogger(__name__)

HEADLESS_FLAGS = [
    "--headless",
    "--invisible",
    "--nodefault",
    "--view",
    "--nolockcheck",
    "--nologo",
    "--norestore",
]

# seconds to wait for a killed process group to be reaped
KILL_GRACE_SECONDS = 5


def expected_output_path(source: Path, outdir: Path) -> Path:
    return outdir / f"{source.stem}.pdf"


class LibreOfficeConverter:
    """
    Converts a document to PDF by running LibreOffice headless.

    Attributes:
        engine_path: Executable name or path of the LibreOffice binary
        timeout_seconds: Wall-clock limit for a single conversion
    """

    def __init__(self, engine_path: str, timeout_seconds: int = 60) -> None:
        self.engine_path = engine_path
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: ConverterSettings) -> "LibreOfficeConverter":
        if not settings.engine_path:
            raise ValueError("An engine path is required for the converter")
        return cls(settings.engine_path, settings.timeout_seconds)

    def build_command(self, source: Path, outdir: Path) -> List[str]:
        return [
            self.engine_path,
            *HEADLESS_FLAGS,
            "--convert-to",
            "pdf",
            "--outdir",
            str(outdir),
            str(source),
        ]

    def convert(self, source: Path, outdir: Path) -> Path:
        """
        Convert source into outdir and return the produced PDF.

        The engine runs in its own process session so that, on timeout, the
        whole process group (the launcher script and soffice.bin) is killed.

        Args:
            source: Normalized spreadsheet to convert
            outdir: Directory LibreOffice writes the PDF into

        Returns:
            Path to <outdir>/<source stem>.pdf

        Raises:
            ConversionTimeout: If the engine exceeds timeout_seconds
            ConversionError: If the engine cannot start, exits non-zero, or
                leaves no (or an empty) PDF behind
        """
        command = self.build_command(source, outdir)
        logger.info(f"Running conversion engine: {' '.join(command)}")
        try:
            process = subprocess.Popen(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                encoding="utf-8",
                errors="replace",
                start_new_session=True,
            )
        except OSError as exc:
            raise ConversionError(f"Could not start conversion engine {self.engine_path!r}: {exc}") from exc

        try:
            stdout, stderr = process.communicate(timeout=self.timeout_seconds)
        except subprocess.TimeoutExpired as exc:
            self._kill(process)
            try:
                stdout, stderr = process.communicate(timeout=KILL_GRACE_SECONDS)
            except subprocess.TimeoutExpired:
                stdout, stderr = "", ""
            logger.error(f"Conversion of {source.name} timed out after {self.timeout_seconds}s")
            raise ConversionTimeout(
                f"Conversion engine did not finish within {self.timeout_seconds}s",
                stdout=stdout or "",
                stderr=stderr or "",
            ) from exc

        if process.returncode != 0:
            logger.error(
                f"Conversion engine exited with {process.returncode} for {source.name}\n"
                f"stdout: {stdout.strip()}\nstderr: {stderr.strip()}"
            )
            raise ConversionError(
                f"Conversion engine exited with status {process.returncode}",
                stdout=stdout,
                stderr=stderr,
            )

        output = expected_output_path(source, outdir)
        if not output.is_file() or output.stat().st_size == 0:
            logger.error(f"Conversion engine reported success but {output} is missing or empty\nstderr: {stderr.strip()}")
            raise ConversionError(f"Conversion engine produced no output at {output}", stdout=stdout, stderr=stderr)

        logger.info(f"Converted {source.name} to {output.name} ({output.stat().st_size} bytes)")
        return output

    def _kill(self, process: subprocess.Popen) -> None:
        try:
            if hasattr(os, "killpg"):
                os.killpg(process.pid, signal.SIGKILL)
            else:  # pragma: no cover - non-POSIX hosts
                process.kill()
        except ProcessLookupError:
            # exited between the timeout and the kill
            logger.debug(f"Conversion engine pid {process.pid} already exited")

    def warm_up(self, workdir: Path | None = None) -> bool:
        """
        Run one throwaway conversion so LibreOffice creates its user profile.

        The first run of a fresh installation is several times slower than the
        following ones; doing it at startup keeps that cost off the first
        request. Failures are logged and otherwise ignored.

        Returns:
            True if the warm-up conversion succeeded
        """
        with tempfile.TemporaryDirectory(prefix="sheet2pdf-warmup-", dir=workdir) as tmp:
            source = Path(tmp) / "warmup.txt"
            source.write_text("warm-up\n", encoding="utf-8")
            try:
                self.convert(source, Path(tmp))
            except ConversionError as exc:
                logger.warning(f"Conversion engine warm-up failed: {exc}")
                return False
        logger.info("Conversion engine warm-up completed")
        return True
