"""
Abstract interfaces and result contracts for nested transactions.

A nested unit of work runs in one of two modes, expressed as a tagged variant:

- ``Explicit(name)``: the caller created savepoint ``name`` and owns it; the
  runner rolls back to it when the nested work fails.
- ``Implicit()``: the runner creates and owns an anonymous savepoint around the
  nested work.

Concrete runners implement the ``NestedTransactionRunner`` protocol and return
a ``NestedResult`` so the manager and scenarios handle both modes uniformly.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Generic,
    Optional,
    Protocol,
    TypeVar,
    Union,
    runtime_checkable,
)

from sqlalchemy.orm import Session

if TYPE_CHECKING:
    from orm_practice.transactions.manager import Transaction, TransactionManager

T = TypeVar("T")

NestedFn = Callable[[Session], Any]


class TxState(str, enum.Enum):
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass(frozen=True)
class Explicit:
    """Roll back to the caller-owned savepoint ``name`` on failure."""

    name: str


@dataclass(frozen=True)
class Implicit:
    """Let the runner wrap the nested work in its own anonymous savepoint."""


NestedMode = Union[Explicit, Implicit]


@dataclass(frozen=True)
class NestedResult(Generic[T]):
    """
    Outcome of a nested unit of work.

    Attributes
    ----------
    value : T | None
        Return value of the nested function when it succeeded.
    error : BaseException | None
        The contained failure when it did not; the savepoint has already been
        rolled back and the outer transaction is still active.
    savepoint : str | None
        Name of the savepoint that guarded the work (None for anonymous ones).
    """

    value: Optional[T] = None
    error: Optional[BaseException] = None
    savepoint: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@runtime_checkable
class NestedTransactionRunner(Protocol):
    """
    Common interface for the savepoint strategies.

    Attributes
    ----------
    name : str
        A short machine-friendly identifier.
    """

    name: str

    def run(self, manager: "TransactionManager", tx: "Transaction", fn: NestedFn) -> NestedResult:
        """
        Run ``fn`` inside ``tx`` guarded by a savepoint.

        Returns
        -------
        NestedResult
            The value on success, the contained error on failure.
        """
        ...


__all__ = [
    "Explicit",
    "Implicit",
    "NestedFn",
    "NestedMode",
    "NestedResult",
    "NestedTransactionRunner",
    "TxState",
]
