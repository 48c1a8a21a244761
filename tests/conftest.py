"""Pytest configuration for test isolation.

- Puts ``packages/`` and ``libs/db/src`` on ``sys.path`` so ``bank_import``
  and ``db`` import without installation.
- Clears the environment variables the package reads, so a developer's
  ``.env``/shell cannot change results.
- Disposes the shared SQLAlchemy engine after each test; every DB test
  bootstraps its own SQLite file.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
sys.path[:0] = [
    p
    for p in (str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT))
    if p not in sys.path
]

_ENV_VARS = (
    "DATABASE_URL",
    "OPENAI_API_KEY",
    "BANK_IMPORT_EXTRACTION_MODEL",
    "BANK_IMPORT_MAX_WORKERS",
    "BANK_IMPORT_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield
    from db.client import dispose_engine

    dispose_engine()


