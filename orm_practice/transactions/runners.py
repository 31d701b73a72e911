"""
Savepoint strategies for nested units of work.

Both strategies run the nested work inside ``Session.begin_nested()``, so ORM
state (pending objects, flush failures) is unwound by SQLAlchemy itself and a
failed flush never poisons the outer transaction.

``ImplicitSavepointRunner`` stops there: the anonymous savepoint is the only
one involved. ``ExplicitSavepointRunner`` additionally rolls back to the
savepoint the caller created by name, discarding everything issued after it,
including work done before the nested call started.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from orm_practice.exceptions import InvalidStateError, RollbackError, TransactionError
from orm_practice.transactions.abstract import (
    Explicit,
    Implicit,
    NestedFn,
    NestedMode,
    NestedResult,
    NestedTransactionRunner,
)
from orm_practice.utils.logging import get_logger

if TYPE_CHECKING:
    from orm_practice.transactions.manager import Transaction, TransactionManager

log = get_logger(__name__)


def _run_guarded(
    manager: "TransactionManager",
    tx: "Transaction",
    fn: NestedFn,
    operation: str,
    savepoint: Optional[str] = None,
) -> Tuple[Any, Optional[Exception]]:
    """
    Run ``fn`` inside an anonymous savepoint.

    Returns ``(value, None)`` on success and ``(None, error)`` once a failure
    has been rolled back to the anonymous savepoint.
    """
    session = tx.session
    try:
        nested = session.begin_nested()
    except SQLAlchemyError as exc:
        manager.abort(tx, reason="anonymous savepoint could not be created")
        raise TransactionError(
            f"Cannot open a nested transaction in transaction {tx.id}: {exc}"
        ) from exc

    # named savepoints taken inside fn do not outlive the anonymous one
    depth = len(tx.savepoints)
    try:
        value = fn(session)
        nested.commit()
    except Exception as exc:
        if not tx.is_active:
            raise
        log.warning(
            f"[NESTED FAILED] tx={tx.id} operation={operation} error={exc}",
            extra={"tx_id": tx.id, "savepoint": savepoint, "operation": operation},
        )
        try:
            nested.rollback()
        except SQLAlchemyError as rb_exc:
            manager.abort(tx, reason="anonymous savepoint rollback failed")
            raise RollbackError(
                f"Rollback of the nested transaction failed in transaction {tx.id}; "
                f"transaction rolled back: {rb_exc}"
            ) from rb_exc
        tx._truncate_savepoints(depth)
        return None, exc
    tx._truncate_savepoints(depth)
    return value, None


class ExplicitSavepointRunner:
    """
    Roll back to a caller-owned named savepoint when the nested work fails.
    """

    name: str = "explicit"

    def __init__(self, savepoint_name: str) -> None:
        self.savepoint_name = savepoint_name

    def run(self, manager: "TransactionManager", tx: "Transaction", fn: NestedFn) -> NestedResult:
        if not tx.has_savepoint(self.savepoint_name):
            raise InvalidStateError(
                f"Savepoint {self.savepoint_name!r} is not live in transaction {tx.id}"
            )

        value, error = _run_guarded(manager, tx, fn, self.name, savepoint=self.savepoint_name)
        if error is None:
            return NestedResult(value=value, savepoint=self.savepoint_name)
        manager.rollback_to(tx, self.savepoint_name)
        return manager.handle_nested_failure(tx, error, savepoint=self.savepoint_name)


class ImplicitSavepointRunner:
    """
    Wrap the nested work in an anonymous savepoint owned by the runner.
    """

    name: str = "implicit"

    def run(self, manager: "TransactionManager", tx: "Transaction", fn: NestedFn) -> NestedResult:
        value, error = _run_guarded(manager, tx, fn, self.name)
        if error is None:
            return NestedResult(value=value)
        return manager.handle_nested_failure(tx, error)


def runner_for(mode: NestedMode) -> NestedTransactionRunner:
    """Select the strategy for a nested mode."""
    if isinstance(mode, Explicit):
        return ExplicitSavepointRunner(mode.name)
    if isinstance(mode, Implicit):
        return ImplicitSavepointRunner()
    raise TypeError(f"Unknown nested mode {mode!r}")


__all__ = ["ExplicitSavepointRunner", "ImplicitSavepointRunner", "runner_for"]
