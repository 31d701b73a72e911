"""
Transactions package for the ORM practice walkthroughs.

Re-exports the manager, the nested-mode variants and the savepoint runners so
downstream code can import from `orm_practice.transactions` directly.
"""

from orm_practice.transactions.abstract import (
    Explicit,
    Implicit,
    NestedMode,
    NestedResult,
    NestedTransactionRunner,
    TxState,
)
from orm_practice.transactions.manager import Savepoint, Transaction, TransactionManager
from orm_practice.transactions.runners import (
    ExplicitSavepointRunner,
    ImplicitSavepointRunner,
    runner_for,
)

__all__ = [
    # Abstracts
    "Explicit",
    "Implicit",
    "NestedMode",
    "NestedResult",
    "NestedTransactionRunner",
    "TxState",
    # Manager
    "Savepoint",
    "Transaction",
    "TransactionManager",
    # Runners
    "ExplicitSavepointRunner",
    "ImplicitSavepointRunner",
    "runner_for",
]
