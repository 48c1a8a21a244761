"""File-level error types raised by readers and caught per file by the importer.

Row-level problems never raise; see :mod:`bank_import.normalizers`.
"""

from __future__ import annotations

from pathlib import Path


class UnsupportedFormatError(ValueError):
    """The file extension is outside the supported set."""

    def __init__(self, path: str | Path, suffix: str) -> None:
        super().__init__(f"Unsupported format {suffix or '(none)'!r}: {path}")
        self.path = str(path)
        self.suffix = suffix


class StatementReadError(RuntimeError):
    """The file exists in a supported format but cannot be opened or decoded."""

    def __init__(self, path: str | Path, reason: str) -> None:
        super().__init__(f"Failed to read {path}: {reason}")
        self.path = str(path)
        self.reason = reason


__all__ = ["StatementReadError", "UnsupportedFormatError"]
