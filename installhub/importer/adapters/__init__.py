"""Row source adapters for partner imports."""

from __future__ import annotations

from .csv_rows import (
    CSVHeaderError,
    PartnerCSVAdapter,
    RawRow,
    RowSourceStatistics,
    SheetValuesAdapter,
    TabularRowAdapter,
)
from .spreadsheet import GoogleSheetsClient, SpreadsheetFetchError, build_sheet_range

__all__ = [
    "CSVHeaderError",
    "GoogleSheetsClient",
    "PartnerCSVAdapter",
    "RawRow",
    "RowSourceStatistics",
    "SheetValuesAdapter",
    "SpreadsheetFetchError",
    "TabularRowAdapter",
    "build_sheet_range",
]
