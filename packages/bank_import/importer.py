"""Batch import: route each statement file to the right normalizer.

``.csv``/``.xlsx``/``.xlsm``/``.xls`` go through :mod:`bank_import.readers` and
:func:`bank_import.normalizers.normalize_rows`; ``.pdf`` goes through a
:class:`~bank_import.extract_client.DocumentExtractor` and
:func:`bank_import.extraction.candidates_from_extraction`. Any other
extension is reported as unsupported, never silently skipped.

Each file is isolated: a file that cannot be read is reported as ``failed``
and the remaining files still import.
"""

from __future__ import annotations

import os
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from os import PathLike
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from .candidate import TransactionCandidate
from .errors import StatementReadError, UnsupportedFormatError
from .extraction import candidates_from_extraction
from .logging_setup import get_logger
from .normalizers import normalize_rows
from .pmap import clamp_concurrency, p_map
from .readers import DOCUMENT_SUFFIXES, SUPPORTED_SUFFIXES, read_document, read_rows, suffix_of

if TYPE_CHECKING:
    from .extract_client import DocumentExtractor

_logger = get_logger("bank_import.importer")

EXTRACTION_CONTEXT = "bank_statement"
PDF_MIME_TYPE = "application/pdf"
_MAX_WORKERS_ENV = "BANK_IMPORT_MAX_WORKERS"

type FileStatus = Literal["ok", "empty", "unsupported", "failed"]


@dataclass(frozen=True, slots=True)
class FileImportResult:
    path: str
    status: FileStatus
    candidates: tuple[TransactionCandidate, ...] = ()
    total_rows: int = 0
    rejected_rows: int = 0
    dropped_headers: tuple[str, ...] = ()
    error: str | None = None


@dataclass(frozen=True, slots=True)
class ImportReport:
    """Aggregate of a batch import; ``files`` keeps the input order."""

    files: tuple[FileImportResult, ...] = field(default_factory=tuple)

    @property
    def candidates(self) -> list[TransactionCandidate]:
        out: list[TransactionCandidate] = []
        for f in self.files:
            out.extend(f.candidates)
        return out

    @property
    def rejected_rows(self) -> int:
        return sum(f.rejected_rows for f in self.files)

    @property
    def failed(self) -> list[FileImportResult]:
        return [f for f in self.files if f.status in ("failed", "unsupported")]

    def summary(self) -> str:
        text = f"{len(self.candidates)} candidates produced, {self.rejected_rows} rows rejected"
        if self.failed:
            text += f", {len(self.failed)} files not imported"
        return text


def _max_workers_from_env() -> int | None:
    raw = os.getenv(_MAX_WORKERS_ENV)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        _logger.warning("import:bad_max_workers value=%r", raw)
        return None


def _import_spreadsheet(path: Path) -> FileImportResult:
    rows = read_rows(path)
    parsed = normalize_rows(rows)
    return FileImportResult(
        path=str(path),
        status="ok" if parsed.candidates else "empty",
        candidates=parsed.candidates,
        total_rows=parsed.total_rows,
        rejected_rows=parsed.rejected_rows,
        dropped_headers=parsed.headers.dropped,
    )


def _import_document(path: Path, extractor: DocumentExtractor | None) -> FileImportResult:
    if extractor is None:
        return FileImportResult(
            path=str(path), status="failed", error="no document extractor configured"
        )
    payload = read_document(path)
    data = extractor.extract(payload, mime_type=PDF_MIME_TYPE, context=EXTRACTION_CONTEXT)
    extracted = candidates_from_extraction(data)
    return FileImportResult(
        path=str(path),
        status="ok" if extracted.candidates else "empty",
        candidates=extracted.candidates,
        total_rows=extracted.total_entries,
        rejected_rows=extracted.rejected_entries,
    )


def import_file(
    path: str | PathLike[str], extractor: DocumentExtractor | None = None
) -> FileImportResult:
    """Import one file; never raises for file-level problems."""

    p = Path(path)
    suffix = suffix_of(p)
    t0 = time.perf_counter()
    try:
        if suffix not in SUPPORTED_SUFFIXES:
            raise UnsupportedFormatError(p, suffix)
        if suffix in DOCUMENT_SUFFIXES:
            result = _import_document(p, extractor)
        else:
            result = _import_spreadsheet(p)
    except UnsupportedFormatError as e:
        _logger.warning("import:unsupported path=%s suffix=%s", p, suffix)
        return FileImportResult(path=str(p), status="unsupported", error=str(e))
    except StatementReadError as e:
        _logger.error("import:file_failed path=%s reason=%s", p, e.reason)
        return FileImportResult(path=str(p), status="failed", error=str(e))
    except Exception as e:  # noqa: BLE001 - one bad file must not abort the batch
        _logger.error("import:file_failed path=%s error=%s", p, e.__class__.__name__)
        return FileImportResult(path=str(p), status="failed", error=f"{e.__class__.__name__}: {e}")

    _logger.info(
        "import:file_done path=%s status=%s candidates=%d rejected=%d latency_ms=%.2f",
        p,
        result.status,
        len(result.candidates),
        result.rejected_rows,
        (time.perf_counter() - t0) * 1000.0,
    )
    return result


def import_files(
    paths: Iterable[str | PathLike[str]],
    *,
    extractor: DocumentExtractor | None = None,
    max_workers: int | None = None,
) -> ImportReport:
    """Import several files concurrently; results keep the input file order."""

    path_list: Sequence[str | PathLike[str]] = list(paths)
    if not path_list:
        return ImportReport()
    workers = clamp_concurrency(
        max_workers if max_workers is not None else _max_workers_from_env(), len(path_list)
    )
    results = p_map(path_list, lambda p: import_file(p, extractor), concurrency=workers)
    report = ImportReport(files=tuple(results))
    _logger.info("import:batch_done files=%d %s", len(results), report.summary())
    return report


__all__ = [
    "EXTRACTION_CONTEXT",
    "FileImportResult",
    "ImportReport",
    "import_file",
    "import_files",
]
