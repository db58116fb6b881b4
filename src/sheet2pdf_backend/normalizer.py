"""
Print-layout normalization for spreadsheets before conversion.

LibreOffice paginates a sheet using the print settings stored in the
workbook. Sheets wider than a page are split into column strips, which makes
the PDF unreadable, so every sheet is switched to "fit all columns on one
page width, as many pages tall as needed" before conversion.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, NamedTuple, Optional

import openpyxl
from openpyxl.worksheet.properties import PageSetupProperties

from .errors import NormalizationError

logger = logging.getLogger(__name__)

FIT_TO_WIDTH_PAGES = 1
# 0 means no constraint on the number of pages in height
FIT_TO_HEIGHT_UNBOUNDED = 0


class FitSettings(NamedTuple):
    fit_to_page: bool
    fit_to_width: Optional[int]
    fit_to_height: Optional[int]


def normalize_workbook(path: Path) -> Path:
    """
    Rewrite every worksheet's page setup in place to fit width to one page.

    Args:
        path: Path to the .xlsx file; it is overwritten

    Returns:
        The same path, now holding the normalized workbook

    Raises:
        NormalizationError: If the file cannot be parsed or saved
    """
    try:
        workbook = openpyxl.load_workbook(path)
    except Exception as exc:  # noqa: BLE001
        raise NormalizationError(f"Could not parse spreadsheet {path.name}: {exc}") from exc

    try:
        for worksheet in workbook.worksheets:
            properties = worksheet.sheet_properties
            if properties.pageSetUpPr is None:
                properties.pageSetUpPr = PageSetupProperties()
            properties.pageSetUpPr.fitToPage = True
            worksheet.page_setup.fitToWidth = FIT_TO_WIDTH_PAGES
            worksheet.page_setup.fitToHeight = FIT_TO_HEIGHT_UNBOUNDED
        workbook.save(path)
    except Exception as exc:  # noqa: BLE001
        raise NormalizationError(f"Could not rewrite spreadsheet {path.name}: {exc}") from exc
    finally:
        workbook.close()

    logger.debug(f"Normalized page setup of {len(workbook.worksheets)} sheet(s) in {path}")
    return path


def read_fit_settings(path: Path) -> Dict[str, FitSettings]:
    """Return the fit-to-page settings of every worksheet, keyed by title."""
    workbook = openpyxl.load_workbook(path, read_only=False)
    try:
        settings = {}
        for worksheet in workbook.worksheets:
            page_setup_pr = worksheet.sheet_properties.pageSetUpPr
            settings[worksheet.title] = FitSettings(
                fit_to_page=bool(page_setup_pr and page_setup_pr.fitToPage),
                fit_to_width=worksheet.page_setup.fitToWidth,
                fit_to_height=worksheet.page_setup.fitToHeight,
            )
        return settings
    finally:
        workbook.close()
