"""Spreadsheet reading: turn a bank export file into row dictionaries.

Rows are keyed by the raw header string and keep raw cell values: CSV cells
stay text, workbook cells stay numbers/dates/text exactly as stored (no
locale formatting is applied). Blank rows are skipped.

Several banks (DKB, Sparkasse) put a human-readable preamble above the real
header row. The header is located as the first row within the first
:data:`HEADER_SCAN_ROWS` rows in which at least two cells are known column
names; when no such row exists the first non-blank row is used.

Supported: ``.csv`` (UTF-8 with or without BOM, falling back to Windows-1252;
``;``, ``,``, tab and ``|`` delimiters sniffed), ``.xlsx``/``.xlsm`` (first
worksheet, via ``openpyxl``) and legacy ``.xls`` (first sheet, via ``xlrd``).
PDFs are read as bytes for the extraction service. Anything else raises
:class:`UnsupportedFormatError`.
"""

from __future__ import annotations

import csv
import io
import zipfile
from collections.abc import Sequence
from os import PathLike
from pathlib import Path
from typing import Any

import xlrd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from .errors import StatementReadError, UnsupportedFormatError
from .headers import normalize_header

SPREADSHEET_SUFFIXES: frozenset[str] = frozenset({".csv", ".xlsx", ".xlsm", ".xls"})
DOCUMENT_SUFFIXES: frozenset[str] = frozenset({".pdf"})
SUPPORTED_SUFFIXES: frozenset[str] = SPREADSHEET_SUFFIXES | DOCUMENT_SUFFIXES

HEADER_SCAN_ROWS = 30
_CSV_ENCODINGS: tuple[str, ...] = ("utf-8-sig", "cp1252")
_SNIFF_DELIMITERS = ";,\t|"

type Row = dict[str, Any]


def suffix_of(path: str | PathLike[str]) -> str:
    return Path(path).suffix.lower()


def _is_blank(cells: Sequence[Any]) -> bool:
    return all(c is None or (isinstance(c, str) and c.strip() == "") for c in cells)


def _locate_header(raw_rows: Sequence[Sequence[Any]]) -> int | None:
    first_non_blank: int | None = None
    for i, cells in enumerate(raw_rows[:HEADER_SCAN_ROWS]):
        if _is_blank(cells):
            continue
        if first_non_blank is None:
            first_non_blank = i
        known = sum(1 for c in cells if isinstance(c, str) and normalize_header(c) is not None)
        if known >= 2:
            return i
    if first_non_blank is None:
        # Header may sit beyond the scan window only when everything before is blank.
        for i, cells in enumerate(raw_rows):
            if not _is_blank(cells):
                return i
    return first_non_blank


def rows_from_grid(raw_rows: Sequence[Sequence[Any]]) -> list[Row]:
    """Build row dictionaries from a grid of cells (header row located first).

    Columns with an empty header are discarded; when a header repeats (ING
    exports "Währung" twice) only its first column is kept.
    """

    header_idx = _locate_header(raw_rows)
    if header_idx is None:
        return []

    header_cells = raw_rows[header_idx]
    columns: list[tuple[int, str]] = []
    seen: set[str] = set()
    for pos, cell in enumerate(header_cells):
        if cell is None:
            continue
        name = str(cell).strip()
        if not name or name in seen:
            continue
        seen.add(name)
        columns.append((pos, name))

    out: list[Row] = []
    for cells in raw_rows[header_idx + 1 :]:
        if _is_blank(cells):
            continue
        out.append({name: (cells[pos] if pos < len(cells) else None) for pos, name in columns})
    return out


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------


def _decode(data: bytes, path: Path) -> str:
    for encoding in _CSV_ENCODINGS:
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise StatementReadError(path, "unrecognized text encoding")


def _reader_options(text: str) -> dict[str, Any]:
    lines = [line for line in text.splitlines()[:HEADER_SCAN_ROWS] if line.strip()]
    try:
        return {"dialect": csv.Sniffer().sniff("\n".join(lines), delimiters=_SNIFF_DELIMITERS)}
    except csv.Error:
        pass
    # Sniffer gives up on ragged rows (short footers, preambles); use the most frequent delimiter.
    counts = {d: sum(line.count(d) for line in lines) for d in _SNIFF_DELIMITERS}
    best = max(counts, key=lambda d: counts[d])
    return {"dialect": csv.excel, "delimiter": best if counts[best] else ","}


def read_csv_text(text: str) -> list[Row]:
    """Parse CSV text (any supported delimiter) into row dictionaries."""

    options = _reader_options(text)
    with io.StringIO(text, newline="") as f:
        grid = [list(r) for r in csv.reader(f, **options)]
    return rows_from_grid(grid)


def _read_csv(path: Path) -> list[Row]:
    try:
        data = path.read_bytes()
    except OSError as e:
        raise StatementReadError(path, e.strerror or e.__class__.__name__) from e
    text = _decode(data, path)
    try:
        return read_csv_text(text)
    except csv.Error as e:
        raise StatementReadError(path, f"malformed CSV: {e}") from e


# ---------------------------------------------------------------------------
# Workbooks
# ---------------------------------------------------------------------------


def _read_workbook(path: Path) -> list[Row]:
    try:
        wb = load_workbook(path, read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise StatementReadError(path, f"cannot open workbook: {e}") from e
    try:
        if not wb.worksheets:
            return []
        ws = wb.worksheets[0]
        grid = [list(r) for r in ws.iter_rows(values_only=True)]
    finally:
        wb.close()
    return rows_from_grid(grid)


def _legacy_cell(cell: xlrd.sheet.Cell, datemode: int) -> Any:
    if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK, xlrd.XL_CELL_ERROR):
        return None
    if cell.ctype == xlrd.XL_CELL_DATE:
        try:
            return xlrd.xldate_as_datetime(cell.value, datemode)
        except ValueError:
            return cell.value
    return cell.value


def _read_legacy_workbook(path: Path) -> list[Row]:
    try:
        book = xlrd.open_workbook(str(path), on_demand=True)
    except (xlrd.XLRDError, OSError, ValueError) as e:
        raise StatementReadError(path, f"cannot open workbook: {e}") from e
    try:
        if book.nsheets == 0:
            return []
        sheet = book.sheet_by_index(0)
        grid = [
            [_legacy_cell(c, book.datemode) for c in sheet.row(i)] for i in range(sheet.nrows)
        ]
    finally:
        book.release_resources()
    return rows_from_grid(grid)


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------


def read_rows(path: str | PathLike[str]) -> list[Row]:
    """Read a spreadsheet export into row dictionaries.

    Raises :class:`UnsupportedFormatError` for non-spreadsheet extensions and
    :class:`StatementReadError` when the file cannot be opened or decoded.
    """

    p = Path(path)
    suffix = suffix_of(p)
    if suffix not in SPREADSHEET_SUFFIXES:
        raise UnsupportedFormatError(p, suffix)
    if not p.is_file():
        raise StatementReadError(p, "file not found")
    if suffix == ".csv":
        return _read_csv(p)
    if suffix == ".xls":
        return _read_legacy_workbook(p)
    return _read_workbook(p)


def read_document(path: str | PathLike[str]) -> bytes:
    """Return the raw bytes of a document destined for the extraction service."""

    p = Path(path)
    suffix = suffix_of(p)
    if suffix not in DOCUMENT_SUFFIXES:
        raise UnsupportedFormatError(p, suffix)
    try:
        return p.read_bytes()
    except OSError as e:
        raise StatementReadError(p, e.strerror or e.__class__.__name__) from e


__all__ = [
    "DOCUMENT_SUFFIXES",
    "SPREADSHEET_SUFFIXES",
    "SUPPORTED_SUFFIXES",
    "StatementReadError",
    "UnsupportedFormatError",
    "read_csv_text",
    "read_document",
    "read_rows",
    "rows_from_grid",
    "suffix_of",
]
