"""Shared SQLAlchemy models registry.

Currently holds the banking models used by ``bank_import``.
"""

from .banking import BankTransaction, Base, TransactionRule

__all__ = [
    "Base",
    "BankTransaction",
    "TransactionRule",
]
