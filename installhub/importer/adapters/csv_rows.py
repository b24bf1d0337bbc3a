"""Tabular row readers for partner job imports.

Both inline CSV text and spreadsheet value grids are turned into ordered,
header-keyed ``RawRow`` objects. Rows that cannot be lined up with the header
are reported as ``RowParseError`` values alongside the good rows so the run can
carry on; only a missing or unusable header is fatal.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from typing import IO, Iterable, Iterator, Sequence, Union

from installhub.importer.errors import RowParseError, SourceReadError


class CSVHeaderError(SourceReadError):
    """Raised when the header row is absent or ambiguous."""

    def __init__(self, message: str, *, duplicates: Sequence[str] | None = None) -> None:
        super().__init__(message)
        self.duplicates = tuple(duplicates or ())


@dataclass(frozen=True)
class RawRow:
    """A source row keyed by header name, with its 1-based data-row index."""

    row_index: int
    values: dict[str, str]

    def get(self, column: str) -> str | None:
        return self.values.get(column)

    def has_column(self, column: str) -> bool:
        return column in self.values


@dataclass
class RowSourceStatistics:
    rows_read: int = 0
    rows_skipped_blank: int = 0
    rows_rejected: int = 0


ReadResult = Union[RawRow, RowParseError]


def _sanitize_header(header: object | None) -> str:
    token = str(header or "").strip().lstrip("\ufeff").strip()
    if len(token) >= 2 and token[0] == token[-1] == '"':
        token = token[1:-1].strip()
    return token


def _cell(value: object | None) -> str:
    if value is None:
        return ""
    return str(value)


def _row_is_blank(cells: Sequence[object | None]) -> bool:
    return all(_cell(cell).strip() == "" for cell in cells)


def _validate_header(cells: Sequence[object | None]) -> tuple[str, ...]:
    header = tuple(_sanitize_header(cell) for cell in cells)
    seen: set[str] = set()
    duplicates: list[str] = []
    for name in header:
        if not name:
            continue
        if name in seen:
            duplicates.append(name)
        seen.add(name)
    if duplicates:
        raise CSVHeaderError(
            "Header row contains duplicate columns: " + ", ".join(sorted(set(duplicates))) + ".",
            duplicates=duplicates,
        )
    return header


class TabularRowAdapter:
    """
    Shared header/row handling for CSV and spreadsheet sources.

    ``pad_short_rows`` fills missing trailing cells with empty strings before
    the column-count check; spreadsheet APIs omit trailing blank cells.
    """

    def __init__(self, *, pad_short_rows: bool = False) -> None:
        self.pad_short_rows = pad_short_rows
        self.statistics = RowSourceStatistics()
        self._header: tuple[str, ...] | None = None

    @property
    def header(self) -> tuple[str, ...] | None:
        return self._header

    def _iter_records(self) -> Iterator[Sequence[object | None] | RowParseError]:
        raise NotImplementedError

    def iter_rows(self) -> Iterator[ReadResult]:
        self.statistics = RowSourceStatistics()
        self._header = None
        row_index = 0

        for record in self._iter_records():
            if self._header is None:
                if isinstance(record, RowParseError):
                    raise SourceReadError(f"Header row could not be read: {record.message}")
                if _row_is_blank(record):
                    continue
                self._header = _validate_header(record)
                continue

            row_index += 1
            if isinstance(record, RowParseError):
                self.statistics.rows_rejected += 1
                yield RowParseError(row_index, f"Row {row_index}: {record.message}")
                continue

            cells = [_cell(cell) for cell in record]
            if _row_is_blank(cells):
                self.statistics.rows_skipped_blank += 1
                continue

            expected = len(self._header)
            if self.pad_short_rows and len(cells) < expected:
                cells.extend([""] * (expected - len(cells)))
            if len(cells) != expected:
                self.statistics.rows_rejected += 1
                yield RowParseError(
                    row_index,
                    f"Row {row_index}: expected {expected} columns, found {len(cells)}.",
                )
                continue

            self.statistics.rows_read += 1
            values = {name: cell for name, cell in zip(self._header, cells) if name}
            yield RawRow(row_index=row_index, values=values)

        if self._header is None:
            raise CSVHeaderError("Source contains no header row.")


class PartnerCSVAdapter(TabularRowAdapter):
    """CSV reader over inline text or an open text handle."""

    def __init__(self, source: str | IO[str]) -> None:
        super().__init__(pad_short_rows=False)
        if source is None:
            raise SourceReadError("No CSV data supplied.")
        self._source = source

    def _open(self) -> IO[str]:
        if isinstance(self._source, str):
            return io.StringIO(self._source, newline="")
        self._source.seek(0)
        return self._source

    def _iter_records(self) -> Iterator[Sequence[object | None] | RowParseError]:
        try:
            handle = self._open()
        except (OSError, ValueError) as exc:
            raise SourceReadError(f"CSV data could not be read: {exc}") from exc

        reader = csv.reader(handle)
        while True:
            try:
                record = next(reader)
            except StopIteration:
                return
            except csv.Error as exc:
                yield RowParseError(0, f"unreadable row ({exc}).")
                continue
            yield record


class SheetValuesAdapter(TabularRowAdapter):
    """Reader over a spreadsheet value grid (list of rows of cell values)."""

    def __init__(self, values: Iterable[Sequence[object | None]] | None) -> None:
        super().__init__(pad_short_rows=True)
        if values is None:
            raise SourceReadError("Spreadsheet returned no values.")
        self._values = values

    def _iter_records(self) -> Iterator[Sequence[object | None] | RowParseError]:
        for record in self._values:
            if not isinstance(record, (list, tuple)):
                yield RowParseError(0, f"unreadable row ({type(record).__name__} is not a list of cells).")
                continue
            yield record
