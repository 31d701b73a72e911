"""
ORM Practice - walkthroughs of everyday ORM usage with SQLAlchemy.

This package collects small, runnable examples against a local database:

- CRUD, bulk inserts and field-level updates
- Soft and hard deletes
- Nested transactions through savepoints, in explicit (caller-named) and
  implicit (runner-owned) modes

The transaction manager is the one piece with a real contract: an outer
transaction, uniquely named savepoints, rollback-to-savepoint that keeps the
outer work, and full rollback whenever a savepoint rollback fails.
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from orm_practice.config import Settings, get_settings
from orm_practice.domain.models import User, UserCreate, UserRead
from orm_practice.exceptions import (
    CommitError,
    DatabaseConnectionError,
    DuplicateNameError,
    InvalidStateError,
    MigrationError,
    NestedOperationError,
    NoRowsAffectedError,
    OrmPracticeError,
    RollbackError,
    TransactionError,
    UserNotFoundError,
)
from orm_practice.infrastructure.db_factory import Database, migrate, open_database
from orm_practice.scenarios import available_scenarios, run_scenarios
from orm_practice.transactions import (
    Explicit,
    Implicit,
    NestedResult,
    NestedTransactionRunner,
    Transaction,
    TransactionManager,
    TxState,
)
from orm_practice.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Database
    "Database",
    "migrate",
    "open_database",
    # Domain
    "User",
    "UserCreate",
    "UserRead",
    # Transactions
    "Explicit",
    "Implicit",
    "NestedResult",
    "NestedTransactionRunner",
    "Transaction",
    "TransactionManager",
    "TxState",
    # Scenarios
    "available_scenarios",
    "run_scenarios",
    # Errors
    "CommitError",
    "DatabaseConnectionError",
    "DuplicateNameError",
    "InvalidStateError",
    "MigrationError",
    "NestedOperationError",
    "NoRowsAffectedError",
    "OrmPracticeError",
    "RollbackError",
    "TransactionError",
    "UserNotFoundError",
    # Logging
    "configure_logging",
    "get_logger",
]
