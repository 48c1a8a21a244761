"""db: shared database library (SQLAlchemy).

Public exports
--------------
- ``Base`` and ``metadata`` for schema creation
- ORM models in ``db.models.banking`` (re-exported for convenience)
- Engine/session helpers in ``db.client``
"""

from __future__ import annotations

from .models.banking import BankTransaction, Base, TransactionRule

metadata = Base.metadata

__all__ = [
    "Base",
    "metadata",
    "BankTransaction",
    "TransactionRule",
]
