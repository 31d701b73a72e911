from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orm_practice.domain.models import User, UserCreate
from orm_practice.exceptions import (
    CommitError,
    DatabaseConnectionError,
    DuplicateNameError,
    InvalidStateError,
    NestedOperationError,
    NoRowsAffectedError,
    RollbackError,
    TransactionError,
)
from orm_practice.infrastructure.db_factory import Database
from orm_practice.repositories.user_repository import create_user, list_users, update_user_field
from orm_practice.transactions import Explicit, Implicit, TransactionManager, TxState

USER_A = UserCreate(name="A", email="a@example.com", balance=100)
USER_B = UserCreate(name="B", email="b@example.com", balance=50)


def _names(database: Database) -> list[str]:
    with database.session_scope() as session:
        return [user.name for user in list_users(session)]


def _update_missing_user(session: Session) -> int:
    return update_user_field(session, {"name": "B"}, "balance", 500, require_match=True)


def _create_b_then_fail(session: Session) -> None:
    create_user(session, USER_B)
    raise RuntimeError("inner failure after insert")


# --------------------------------------------------------------------------- lifecycle


def test_begin_returns_active_transaction(manager: TransactionManager):
    tx = manager.begin()
    assert tx.state is TxState.ACTIVE
    assert tx.is_active
    assert manager.active is tx
    manager.rollback(tx)
    assert tx.state is TxState.ROLLED_BACK
    assert manager.active is None


def test_only_one_outer_transaction_at_a_time(manager: TransactionManager):
    tx = manager.begin()
    with pytest.raises(InvalidStateError):
        manager.begin()
    manager.commit(tx)
    second = manager.begin()
    assert second.id == tx.id + 1
    manager.rollback(second)


def test_begin_on_closed_database_raises_connection_error():
    database = Database(":memory:")
    database.close()
    manager = TransactionManager(database, failure_policy="continue")
    with pytest.raises(DatabaseConnectionError) as excinfo:
        manager.begin()
    assert isinstance(excinfo.value, ConnectionError)


def test_commit_persists_and_rollback_discards(manager: TransactionManager, database: Database):
    tx = manager.begin()
    create_user(tx.session, USER_A)
    manager.commit(tx)
    assert tx.state is TxState.COMMITTED

    tx = manager.begin()
    create_user(tx.session, USER_B)
    manager.rollback(tx)

    assert _names(database) == ["A"]


def test_operations_on_finished_transaction_raise_invalid_state(manager: TransactionManager):
    tx = manager.begin()
    manager.commit(tx)
    with pytest.raises(InvalidStateError):
        manager.savepoint(tx, "sp")
    with pytest.raises(InvalidStateError):
        manager.commit(tx)
    with pytest.raises(InvalidStateError):
        manager.rollback(tx)
    with pytest.raises(InvalidStateError):
        manager.run_nested(tx, lambda session: None)


def test_commit_rejected_by_constraint_raises_commit_error(
    manager: TransactionManager, database: Database
):
    tx = manager.begin()
    create_user(tx.session, USER_A)
    # unflushed duplicates only reach the database at commit time
    tx.session.add(User(name="Dup1", email="dup@example.com"))
    tx.session.add(User(name="Dup2", email="dup@example.com"))

    with pytest.raises(CommitError):
        manager.commit(tx)

    assert tx.state is TxState.ROLLED_BACK
    assert manager.active is None
    assert _names(database) == []


def test_transaction_scope_commits_on_success(manager: TransactionManager, database: Database):
    with manager.transaction() as tx:
        create_user(tx.session, USER_A)
    assert tx.state is TxState.COMMITTED
    assert _names(database) == ["A"]


def test_transaction_scope_rolls_back_on_exception(
    manager: TransactionManager, database: Database
):
    with pytest.raises(RuntimeError):
        with manager.transaction() as tx:
            create_user(tx.session, USER_A)
            raise RuntimeError("boom")
    assert tx.state is TxState.ROLLED_BACK
    assert manager.active is None
    assert _names(database) == []


def test_transaction_scope_rolls_back_on_keyboard_interrupt(
    manager: TransactionManager, database: Database
):
    with pytest.raises(KeyboardInterrupt):
        with manager.transaction() as tx:
            create_user(tx.session, USER_A)
            raise KeyboardInterrupt
    assert tx.state is TxState.ROLLED_BACK
    assert _names(database) == []


def test_transaction_scope_leaves_explicitly_finished_transaction(manager: TransactionManager):
    with manager.transaction() as tx:
        manager.rollback(tx)
    assert tx.state is TxState.ROLLED_BACK


# --------------------------------------------------------------------------- savepoints


def test_duplicate_savepoint_name_raises(manager: TransactionManager):
    tx = manager.begin()
    manager.savepoint(tx, "sp_one")
    with pytest.raises(DuplicateNameError):
        manager.savepoint(tx, "sp_one")
    assert tx.is_active
    manager.rollback(tx)


def test_savepoint_name_cannot_be_reused_after_release(manager: TransactionManager):
    tx = manager.begin()
    manager.savepoint(tx, "sp_one")
    manager.release(tx, "sp_one")
    assert tx.savepoints == ()
    with pytest.raises(DuplicateNameError):
        manager.savepoint(tx, "sp_one")
    manager.rollback(tx)


def test_savepoint_rejects_non_identifier_names(manager: TransactionManager):
    tx = manager.begin()
    with pytest.raises(ValueError):
        manager.savepoint(tx, "sp; DROP TABLE users")
    manager.rollback(tx)


def test_savepoint_flush_failure_rolls_back_everything(
    manager: TransactionManager, database: Database
):
    tx = manager.begin()
    create_user(tx.session, USER_A)
    # unflushed duplicate surfaces when the savepoint flushes
    tx.session.add(User(name="A2", email=USER_A.email))

    with pytest.raises(TransactionError) as excinfo:
        manager.savepoint(tx, "sp")

    assert isinstance(excinfo.value.__cause__, IntegrityError)
    assert tx.state is TxState.ROLLED_BACK
    assert manager.active is None
    assert _names(database) == []


def test_rollback_to_keeps_work_before_savepoint(manager: TransactionManager, database: Database):
    tx = manager.begin()
    create_user(tx.session, USER_A)
    manager.savepoint(tx, "sp_before_b")
    create_user(tx.session, USER_B)

    manager.rollback_to(tx, "sp_before_b")

    assert tx.is_active
    assert [user.name for user in list_users(tx.session)] == ["A"]
    manager.commit(tx)
    assert _names(database) == ["A"]


def test_rollback_to_discards_later_savepoints(manager: TransactionManager):
    tx = manager.begin()
    manager.savepoint(tx, "sp_outer")
    manager.savepoint(tx, "sp_inner")
    assert tx.savepoints == ("sp_outer", "sp_inner")

    manager.rollback_to(tx, "sp_outer")

    assert tx.savepoints == ()
    assert tx.is_active
    manager.rollback(tx)


def test_rollback_to_twice_raises_and_rolls_back_everything(
    manager: TransactionManager, database: Database
):
    tx = manager.begin()
    create_user(tx.session, USER_A)
    manager.savepoint(tx, "sp")
    create_user(tx.session, USER_B)
    manager.rollback_to(tx, "sp")

    with pytest.raises(RollbackError):
        manager.rollback_to(tx, "sp")

    assert tx.state is TxState.ROLLED_BACK
    assert manager.active is None
    assert _names(database) == []


def test_rollback_to_released_savepoint_raises_and_rolls_back_everything(
    manager: TransactionManager, database: Database
):
    tx = manager.begin()
    create_user(tx.session, USER_A)
    manager.savepoint(tx, "sp")
    manager.release(tx, "sp")

    with pytest.raises(RollbackError):
        manager.rollback_to(tx, "sp")

    assert tx.state is TxState.ROLLED_BACK
    assert _names(database) == []


def test_release_unknown_savepoint_raises_invalid_state(manager: TransactionManager):
    tx = manager.begin()
    with pytest.raises(InvalidStateError):
        manager.release(tx, "sp_missing")
    assert tx.is_active
    manager.rollback(tx)


def test_released_savepoint_work_survives_outer_commit(
    manager: TransactionManager, database: Database
):
    tx = manager.begin()
    manager.savepoint(tx, "sp")
    create_user(tx.session, USER_B)
    manager.release(tx, "sp")
    manager.commit(tx)
    assert _names(database) == ["B"]


# --------------------------------------------------------------------------- nested units


def test_explicit_mode_zero_rows_update_is_rolled_back(
    manager: TransactionManager, database: Database
):
    tx = manager.begin()
    create_user(tx.session, USER_A)
    manager.savepoint(tx, "sp_explicit")

    result = manager.run_nested(tx, _update_missing_user, Explicit("sp_explicit"))

    assert not result.ok
    assert isinstance(result.error, NoRowsAffectedError)
    assert result.savepoint == "sp_explicit"
    assert tx.is_active
    assert not tx.has_savepoint("sp_explicit")
    manager.commit(tx)

    with database.session_scope() as session:
        users = list_users(session)
    assert [(u.name, u.balance) for u in users] == [("A", 100)]


def test_implicit_mode_zero_rows_update_is_rolled_back(
    manager: TransactionManager, database: Database
):
    tx = manager.begin()
    create_user(tx.session, USER_A)

    result = manager.run_nested(tx, _update_missing_user, Implicit())

    assert isinstance(result.error, NoRowsAffectedError)
    assert result.savepoint is None
    assert tx.is_active
    manager.commit(tx)
    assert _names(database) == ["A"]


@pytest.mark.parametrize("mode", [Explicit("sp_inner"), Implicit()], ids=["explicit", "implicit"])
def test_successful_inner_work_is_committed_with_outer(
    manager: TransactionManager, database: Database, mode
):
    tx = manager.begin()
    create_user(tx.session, USER_A)
    if isinstance(mode, Explicit):
        manager.savepoint(tx, mode.name)

    result = manager.run_nested(tx, lambda session: create_user(session, USER_B).name, mode)

    assert result.ok
    assert result.value == "B"
    manager.commit(tx)
    assert _names(database) == ["A", "B"]


@pytest.mark.parametrize("mode", [Explicit("sp_inner"), Implicit()], ids=["explicit", "implicit"])
def test_failed_inner_work_removes_only_inner_changes(
    manager: TransactionManager, database: Database, mode
):
    tx = manager.begin()
    create_user(tx.session, USER_A)
    if isinstance(mode, Explicit):
        manager.savepoint(tx, mode.name)

    result = manager.run_nested(tx, _create_b_then_fail, mode)

    assert isinstance(result.error, RuntimeError)
    assert all(user.name != "B" for user in tx.session.identity_map.values())
    manager.commit(tx)
    assert _names(database) == ["A"]


@pytest.mark.parametrize("mode", [Explicit("sp_dup"), Implicit()], ids=["explicit", "implicit"])
def test_nested_unit_contains_constraint_violation(
    manager: TransactionManager, database: Database, mode
):
    tx = manager.begin()
    create_user(tx.session, USER_A)
    if isinstance(mode, Explicit):
        manager.savepoint(tx, mode.name)

    result = manager.run_nested(
        tx, lambda session: create_user(session, UserCreate(name="A2", email=USER_A.email)), mode
    )

    assert not result.ok
    assert tx.is_active
    manager.commit(tx)
    assert _names(database) == ["A"]


def test_explicit_mode_requires_live_savepoint(manager: TransactionManager):
    tx = manager.begin()
    with pytest.raises(InvalidStateError):
        manager.run_nested(tx, _update_missing_user, Explicit("sp_never_created"))
    assert tx.is_active
    manager.rollback(tx)


def test_explicit_mode_surfaces_failed_savepoint_rollback(
    manager: TransactionManager, database: Database
):
    tx = manager.begin()
    create_user(tx.session, USER_A)
    manager.savepoint(tx, "sp")

    def release_then_fail(session: Session) -> None:
        manager.release(tx, "sp")
        raise RuntimeError("inner failure")

    # the savepoint vanished mid-flight, so the rollback to it is fatal
    with pytest.raises(RollbackError):
        manager.run_nested(tx, release_then_fail, Explicit("sp"))

    assert tx.state is TxState.ROLLED_BACK
    assert _names(database) == []


def test_implicit_mode_surfaces_failed_savepoint_rollback(
    manager: TransactionManager, database: Database
):
    tx = manager.begin()
    create_user(tx.session, USER_A)
    manager.savepoint(tx, "sp_outer")

    def unwind_past_anonymous_savepoint(session: Session) -> None:
        manager.rollback_to(tx, "sp_outer")
        raise RuntimeError("inner failure")

    with pytest.raises(RollbackError):
        manager.run_nested(tx, unwind_past_anonymous_savepoint, Implicit())

    assert tx.state is TxState.ROLLED_BACK
    assert _names(database) == []


def test_abort_policy_raises_after_rolling_back_to_savepoint(
    aborting_manager: TransactionManager, database: Database
):
    with pytest.raises(NestedOperationError) as excinfo:
        with aborting_manager.transaction() as tx:
            create_user(tx.session, USER_A)
            aborting_manager.run_nested(tx, _update_missing_user, Implicit())

    assert isinstance(excinfo.value.__cause__, NoRowsAffectedError)
    assert tx.state is TxState.ROLLED_BACK
    assert _names(database) == []


def test_nested_failure_is_logged_with_transaction_context(
    manager: TransactionManager, caplog: pytest.LogCaptureFixture
):
    caplog.set_level("WARNING", logger="orm_practice")
    tx = manager.begin()
    manager.run_nested(tx, _update_missing_user)
    manager.rollback(tx)

    contained = [r for r in caplog.records if "[NESTED CONTAINED]" in r.getMessage()]
    assert contained
    assert contained[0].tx_id == tx.id
