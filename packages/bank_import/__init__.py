"""Public interface for the ``bank_import`` package.

Symbol re-exports only. Persistence (``bank_import.persistence``), the OpenAI
extraction client and the CLI are imported from their modules directly so
that importing the package does not pull in SQLAlchemy or the OpenAI SDK.
"""

from .candidate import TransactionCandidate
from .errors import StatementReadError, UnsupportedFormatError
from .extraction import ExtractionResult, candidates_from_extraction
from .headers import IGNORE, HeaderMapping, map_headers, normalize_header
from .importer import FileImportResult, ImportReport, import_file, import_files
from .normalizers import StatementParseResult, normalize_rows
from .readers import read_rows
from .rules import (
    BackfillReport,
    BookedTransaction,
    ClassificationReport,
    ClassificationRule,
    RuleAction,
    RuleCondition,
    RuleEngine,
    RuleMatch,
    manual_match,
    rule_from_manual_match,
)
from .values import parse_amount_cents, parse_date

__all__ = [
    # Ingestion
    "TransactionCandidate",
    "IGNORE",
    "HeaderMapping",
    "map_headers",
    "normalize_header",
    "parse_amount_cents",
    "parse_date",
    "StatementParseResult",
    "normalize_rows",
    "ExtractionResult",
    "candidates_from_extraction",
    "read_rows",
    "FileImportResult",
    "ImportReport",
    "import_file",
    "import_files",
    # Errors
    "StatementReadError",
    "UnsupportedFormatError",
    # Rules
    "BackfillReport",
    "BookedTransaction",
    "ClassificationReport",
    "ClassificationRule",
    "RuleAction",
    "RuleCondition",
    "RuleEngine",
    "RuleMatch",
    "manual_match",
    "rule_from_manual_match",
]
