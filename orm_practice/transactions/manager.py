"""
Transaction manager with named savepoints and nested units of work.

Usage:
    from orm_practice.transactions import Explicit, TransactionManager

    manager = TransactionManager(database)
    with manager.transaction() as tx:
        create_user(tx.session, UserCreate(name="A", email="a@example.com"))
        manager.savepoint(tx, "sp_update")
        result = manager.run_nested(tx, risky_update, Explicit("sp_update"))
        if not result.ok:
            log.warning("update discarded: %s", result.error)

One outer transaction is active per manager at a time. Savepoints are tracked
as a stack; rolling back to (or releasing) a savepoint also drops every
savepoint taken after it. Savepoint names are never reused within one
transaction.
"""

from __future__ import annotations

import itertools
import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import FrozenSet, Generator, List, Optional, Set, Tuple

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from orm_practice.config import NestedFailurePolicy, get_settings
from orm_practice.exceptions import (
    CommitError,
    DatabaseConnectionError,
    DuplicateNameError,
    InvalidStateError,
    NestedOperationError,
    RollbackError,
    TransactionError,
)
from orm_practice.infrastructure.db_factory import Database
from orm_practice.transactions.abstract import (
    Implicit,
    NestedFn,
    NestedMode,
    NestedResult,
    TxState,
)
from orm_practice.transactions.runners import runner_for
from orm_practice.utils.logging import get_logger

log = get_logger(__name__)

_SAVEPOINT_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class Savepoint:
    name: str
    # identity-map keys loaded when the savepoint was taken
    identities: FrozenSet[object]


@dataclass(eq=False)
class Transaction:
    """
    An outer transaction bound to one ORM session.

    Attributes
    ----------
    id : int
        Sequence number assigned by the manager, used in log context.
    session : Session
        The session every operation of this transaction must go through.
    state : TxState
        ``active`` until committed or rolled back.
    """

    id: int
    session: Session
    state: TxState = TxState.ACTIVE
    _savepoints: List[Savepoint] = field(default_factory=list, repr=False)
    _used_names: Set[str] = field(default_factory=set, repr=False)

    @property
    def is_active(self) -> bool:
        return self.state is TxState.ACTIVE

    @property
    def savepoints(self) -> Tuple[str, ...]:
        """Names of the live savepoints, oldest first."""
        return tuple(sp.name for sp in self._savepoints)

    def has_savepoint(self, name: str) -> bool:
        return self._index_of(name) is not None

    def _index_of(self, name: str) -> Optional[int]:
        for index, savepoint in enumerate(self._savepoints):
            if savepoint.name == name:
                return index
        return None

    def _truncate_savepoints(self, depth: int) -> None:
        del self._savepoints[depth:]


class TransactionManager:
    """
    Sequences an outer transaction and its savepoints on an explicit handle.

    Parameters
    ----------
    database : Database
        The handle transactions are opened against.
    failure_policy : "continue" | "abort" | None
        What a failed nested unit does to the outer transaction once its
        savepoint has been rolled back. ``continue`` returns the error in the
        ``NestedResult`` and keeps the outer transaction committable;
        ``abort`` raises ``NestedOperationError``. Defaults to settings.
    """

    def __init__(
        self, database: Database, failure_policy: Optional[NestedFailurePolicy] = None
    ) -> None:
        self.database = database
        self.failure_policy: NestedFailurePolicy = (
            failure_policy or get_settings().nested_failure_policy
        )
        self._active: Optional[Transaction] = None
        self._ids = itertools.count(1)

    @property
    def active(self) -> Optional[Transaction]:
        return self._active

    def begin(self) -> Transaction:
        """
        Open a new outer transaction.

        Raises
        ------
        DatabaseConnectionError
            If the handle is closed or no connection can be acquired.
        InvalidStateError
            If a transaction opened by this manager is still active.
        """
        if self._active is not None and self._active.is_active:
            raise InvalidStateError(f"Transaction {self._active.id} is still active")

        session = self.database.new_session()
        try:
            session.begin()
            session.connection()
        except SQLAlchemyError as exc:
            session.close()
            raise DatabaseConnectionError(
                f"Cannot begin a transaction on {self.database.locator!r}: {exc}"
            ) from exc

        tx = Transaction(id=next(self._ids), session=session)
        self._active = tx
        log.info(f"[TX BEGIN] tx={tx.id}", extra={"tx_id": tx.id})
        return tx

    def savepoint(self, tx: Transaction, name: str) -> Savepoint:
        """
        Create the named savepoint ``name`` inside ``tx``.

        Pending ORM changes are flushed first so the savepoint captures them.

        Raises
        ------
        InvalidStateError
            If ``tx`` is not active.
        DuplicateNameError
            If ``name`` was already used in ``tx``.
        ValueError
            If ``name`` is not a plain SQL identifier.
        TransactionError
            If the pending changes cannot be flushed (e.g. a unique violation)
            or the database rejects the SAVEPOINT. The whole transaction has
            been rolled back.
        """
        self._require_active(tx, "create a savepoint")
        if not _SAVEPOINT_NAME.match(name):
            raise ValueError(f"Invalid savepoint name {name!r}")
        if name in tx._used_names:
            raise DuplicateNameError(f"Savepoint {name!r} already used in transaction {tx.id}")

        session = tx.session
        try:
            session.flush()
            session.execute(text(f"SAVEPOINT {self._quote(tx, name)}"))
        except SQLAlchemyError as exc:
            self.abort(tx, reason=f"savepoint {name!r} could not be created")
            raise TransactionError(
                f"Cannot create savepoint {name!r} in transaction {tx.id}: {exc}"
            ) from exc

        savepoint = Savepoint(name=name, identities=frozenset(session.identity_map.keys()))
        tx._used_names.add(name)
        tx._savepoints.append(savepoint)
        log.info(
            f"[SAVEPOINT] tx={tx.id} name={name}",
            extra={"tx_id": tx.id, "savepoint": name, "operation": "savepoint"},
        )
        return savepoint

    def rollback_to(self, tx: Transaction, name: str) -> None:
        """
        Revert ``tx`` to the savepoint ``name``, keeping ``tx`` active.

        The savepoint and every savepoint taken after it are consumed. Objects
        first loaded or added after the savepoint leave the session; the rest
        are expired so they reload the restored rows.

        Raises
        ------
        InvalidStateError
            If ``tx`` is not active.
        RollbackError
            If the savepoint does not exist or the database rejects the
            rollback. The whole transaction has been rolled back.
        """
        self._require_active(tx, "roll back to a savepoint")
        index = tx._index_of(name)
        if index is None:
            self.abort(tx, reason=f"savepoint {name!r} does not exist")
            raise RollbackError(
                f"Savepoint {name!r} does not exist in transaction {tx.id}; "
                "transaction rolled back"
            )

        savepoint = tx._savepoints[index]
        session = tx.session
        for obj in list(session.new):
            session.expunge(obj)
        quoted = self._quote(tx, name)
        try:
            session.execute(text(f"ROLLBACK TO SAVEPOINT {quoted}"))
            session.execute(text(f"RELEASE SAVEPOINT {quoted}"))
        except SQLAlchemyError as exc:
            self.abort(tx, reason=f"rollback to savepoint {name!r} failed")
            raise RollbackError(
                f"Rollback to savepoint {name!r} failed in transaction {tx.id}; "
                f"transaction rolled back: {exc}"
            ) from exc

        del tx._savepoints[index:]
        for key in list(session.identity_map.keys()):
            if key not in savepoint.identities:
                obj = session.identity_map.get(key)
                if obj is not None:
                    session.expunge(obj)
        session.expire_all()
        log.info(
            f"[SAVEPOINT ROLLBACK] tx={tx.id} name={name}",
            extra={"tx_id": tx.id, "savepoint": name, "operation": "rollback_to"},
        )

    def release(self, tx: Transaction, name: str) -> None:
        """
        Release the savepoint ``name``; its work stays part of ``tx``.

        Raises
        ------
        InvalidStateError
            If ``tx`` is not active or ``name`` is not a live savepoint.
        """
        self._require_active(tx, "release a savepoint")
        index = tx._index_of(name)
        if index is None:
            raise InvalidStateError(f"Savepoint {name!r} is not live in transaction {tx.id}")

        session = tx.session
        try:
            session.flush()
            session.execute(text(f"RELEASE SAVEPOINT {self._quote(tx, name)}"))
        except SQLAlchemyError as exc:
            self.abort(tx, reason=f"release of savepoint {name!r} failed")
            raise TransactionError(
                f"Cannot release savepoint {name!r} in transaction {tx.id}: {exc}"
            ) from exc

        del tx._savepoints[index:]
        log.info(
            f"[SAVEPOINT RELEASE] tx={tx.id} name={name}",
            extra={"tx_id": tx.id, "savepoint": name, "operation": "release"},
        )

    def run_nested(
        self, tx: Transaction, fn: NestedFn, mode: Optional[NestedMode] = None
    ) -> NestedResult:
        """
        Run ``fn(session)`` as a nested unit of work inside ``tx``.

        Parameters
        ----------
        tx : Transaction
            The active outer transaction.
        fn : Callable[[Session], Any]
            The nested work. Raising any ``Exception`` marks it failed.
        mode : Explicit | Implicit | None
            ``fn`` always runs in an anonymous savepoint. On failure,
            ``Explicit(name)`` also rolls back to the caller's savepoint;
            ``Implicit()`` (default) stops at the anonymous one.

        Returns
        -------
        NestedResult
            ``ok`` with the value of ``fn``, or the contained error.

        Raises
        ------
        RollbackError
            If the savepoint rollback failed (whole transaction rolled back).
        NestedOperationError
            If ``fn`` failed and the failure policy is ``abort``.
        """
        self._require_active(tx, "run a nested operation")
        runner = runner_for(mode if mode is not None else Implicit())
        return runner.run(self, tx, fn)

    def handle_nested_failure(
        self, tx: Transaction, exc: Exception, savepoint: Optional[str] = None
    ) -> NestedResult:
        """
        Apply the failure policy to a nested failure already rolled back.
        """
        context = {"tx_id": tx.id, "savepoint": savepoint, "error": str(exc)}
        if self.failure_policy == "abort":
            log.error(f"[NESTED ABORT] tx={tx.id} error={exc}", extra=context)
            raise NestedOperationError(
                f"Nested operation failed in transaction {tx.id}: {exc}"
            ) from exc
        log.warning(f"[NESTED CONTAINED] tx={tx.id} error={exc}", extra=context)
        return NestedResult(error=exc, savepoint=savepoint)

    def commit(self, tx: Transaction) -> None:
        """
        Commit every change made in ``tx``.

        Raises
        ------
        InvalidStateError
            If ``tx`` is not active.
        CommitError
            If the database rejects the commit; ``tx`` is rolled back.
        """
        self._require_active(tx, "commit")
        try:
            tx.session.commit()
        except SQLAlchemyError as exc:
            self.abort(tx, reason="commit rejected")
            raise CommitError(f"Commit of transaction {tx.id} failed: {exc}") from exc
        self._close(tx, TxState.COMMITTED)
        log.info(f"[TX COMMIT] tx={tx.id}", extra={"tx_id": tx.id})

    def rollback(self, tx: Transaction) -> None:
        """
        Abort ``tx``, discarding all of its changes.

        Raises
        ------
        InvalidStateError
            If ``tx`` is not active.
        """
        self._require_active(tx, "roll back")
        try:
            tx.session.rollback()
        except SQLAlchemyError as exc:
            raise TransactionError(f"Rollback of transaction {tx.id} failed: {exc}") from exc
        finally:
            self._close(tx, TxState.ROLLED_BACK)
        log.info(f"[TX ROLLBACK] tx={tx.id}", extra={"tx_id": tx.id})

    def abort(self, tx: Transaction, reason: str) -> None:
        """
        Roll back ``tx`` if it is still active. Used on fatal paths where the
        original error is about to be raised.
        """
        if not tx.is_active:
            return
        log.error(
            f"[TX ABORT] tx={tx.id} reason={reason}", extra={"tx_id": tx.id, "reason": reason}
        )
        try:
            tx.session.rollback()
        except SQLAlchemyError:
            log.exception(f"[TX ABORT] tx={tx.id} rollback failed", extra={"tx_id": tx.id})
        finally:
            self._close(tx, TxState.ROLLED_BACK)

    @contextmanager
    def transaction(self) -> Generator[Transaction, None, None]:
        """
        Scoped outer transaction: commit on normal exit, roll back otherwise.

        The body may commit or roll back explicitly; the scope then leaves the
        finished transaction alone.
        """
        tx = self.begin()
        try:
            yield tx
        except BaseException:
            self.abort(tx, reason="scope exited with an exception")
            raise
        if tx.is_active:
            self.commit(tx)

    def _require_active(self, tx: Transaction, operation: str) -> None:
        if not tx.is_active:
            raise InvalidStateError(
                f"Cannot {operation}: transaction {tx.id} is {tx.state.value}"
            )

    def _close(self, tx: Transaction, state: TxState) -> None:
        tx.state = state
        tx._savepoints.clear()
        tx.session.close()
        if self._active is tx:
            self._active = None

    @staticmethod
    def _quote(tx: Transaction, name: str) -> str:
        return tx.session.get_bind().dialect.identifier_preparer.quote(name)


__all__ = ["Savepoint", "Transaction", "TransactionManager"]
