from __future__ import annotations


class OrmPracticeError(Exception):
    """
    Base class for every error raised by this package.

    Parameters
    ----------
    detail : str
        Human-readable description, also used as the message.
    """

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail)
        self.detail = detail

    def __str__(self) -> str:
        return self.detail or self.__class__.__name__


class DatabaseConnectionError(OrmPracticeError, ConnectionError):
    """The database could not be opened or reached."""


class MigrationError(OrmPracticeError):
    """Schema creation or teardown failed."""


class TransactionError(OrmPracticeError):
    """Base class for transaction lifecycle failures."""


class InvalidStateError(TransactionError):
    """An operation was attempted on a transaction that is not active."""


class DuplicateNameError(TransactionError):
    """A savepoint name was already used within the same transaction."""


class CommitError(TransactionError):
    """The database rejected the commit. The transaction has been rolled back."""


class RollbackError(TransactionError):
    """Rolling back to a savepoint failed. The whole transaction has been rolled back."""


class NestedOperationError(TransactionError):
    """A nested operation failed while the ``abort`` policy is in effect."""


class RepositoryError(OrmPracticeError):
    """Base class for data-access failures."""


class NoRowsAffectedError(RepositoryError):
    """A write statement matched no rows."""


class UserNotFoundError(RepositoryError):
    """No user matched the lookup."""


__all__ = [
    "CommitError",
    "DatabaseConnectionError",
    "DuplicateNameError",
    "InvalidStateError",
    "MigrationError",
    "NestedOperationError",
    "NoRowsAffectedError",
    "OrmPracticeError",
    "RepositoryError",
    "RollbackError",
    "TransactionError",
    "UserNotFoundError",
]
