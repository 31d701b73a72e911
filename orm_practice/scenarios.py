"""
Orchestrator for the ORM walkthrough scenarios.

Usage (example from CLI):
    from orm_practice.scenarios import run_scenarios

    results = run_scenarios(["explicit_savepoint", "implicit_savepoint"], database)
    print(results)

Scenarios:
- ``crud``: bulk create, read, save, single/multi-field updates, soft delete.
- ``explicit_savepoint``: named savepoint + rollback to it after a failed update.
- ``implicit_savepoint``: the same failure contained by an anonymous savepoint.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional, TypedDict

from sqlalchemy.orm import Session

from orm_practice.config import NestedFailurePolicy, get_settings
from orm_practice.domain.models import UserCreate, UserRead
from orm_practice.exceptions import OrmPracticeError
from orm_practice.infrastructure.db_factory import Database, migrate
from orm_practice.repositories import user_repository as users
from orm_practice.transactions import Explicit, Implicit, NestedMode, TransactionManager
from orm_practice.utils.logging import get_logger

log = get_logger(__name__)

MISSING_USER = "NonExistentUser"


class ScenarioResult(TypedDict, total=False):
    """
    Outcome of one scenario run.

    ``users`` holds the rows visible once the scenario finished.
    """

    scenario: str
    ok: bool
    error: Optional[str]
    notes: List[str]
    users: List[dict]


def _snapshot(database: Database) -> List[dict]:
    with database.session_scope() as session:
        return [
            UserRead.model_validate(user).model_dump(mode="json")
            for user in users.list_users(session)
        ]


def crud_walkthrough(database: Database, reset: bool = True) -> ScenarioResult:
    """
    Create, read, update and delete users one step at a time.

    With ``reset`` the table is dropped and recreated first; otherwise existing
    rows are kept and the walkthrough adds to them. Each step runs in its own
    short session. A failed step is logged and the walkthrough moves on, so
    later steps still demonstrate their call.
    """
    notes: List[str] = []
    migrate(database, drop_existing=reset)

    with database.session_scope() as session:
        created = users.create_users(
            session,
            [
                UserCreate(name="Potato", email="potato@example.com", age=11),
                UserCreate(name="Tomato", email="tomato@example.com", age=12),
                UserCreate(name="Carrot", email="carrot@example.com", age=13),
            ],
        )
        notes.append(f"bulk created ids={[u.id for u in created]}")

    with database.session_scope() as session:
        notes.append(f"read {len(users.list_users(session))} users")

    steps: List[tuple] = [
        ("save potato", _rename_potato),
        (
            "update tomato age",
            lambda s: users.update_user_field(
                s, {"email": "tomato@example.com"}, "age", 20, require_match=True
            ),
        ),
        (
            "update carrot name and age",
            lambda s: users.update_user_fields(
                s,
                {"email": "carrot@example.com"},
                {"name": "Fresh Carrot", "age": 15},
                require_match=True,
            ),
        ),
        ("delete carrot", _delete_carrot),
    ]
    for label, step in steps:
        try:
            with database.session_scope() as session:
                step(session)
            notes.append(f"{label}: ok")
        except OrmPracticeError as exc:
            log.error(f"[ERROR] {label} failed: {exc}", extra={"operation": label})
            notes.append(f"{label}: failed ({exc})")

    return ScenarioResult(notes=notes)


def _rename_potato(session: Session) -> None:
    potato = users.get_user_by_email(session, "potato@example.com")
    potato.name = "Updated Potato"
    users.save_user(session, potato)


def _delete_carrot(session: Session) -> None:
    users.delete_user(session, users.get_user_by_email(session, "carrot@example.com"))


def _update_missing_user(session: Session) -> int:
    """The nested step: zero rows affected is a failure."""
    return users.update_user_field(
        session, {"name": MISSING_USER}, "balance", 500, require_match=True
    )


def _savepoint_example(
    manager: TransactionManager, user: UserCreate, mode: NestedMode
) -> ScenarioResult:
    notes: List[str] = []
    with manager.transaction() as tx:
        users.create_user(tx.session, user)
        notes.append(f"created {user.name}")
        if isinstance(mode, Explicit):
            manager.savepoint(tx, mode.name)
            notes.append(f"savepoint {mode.name}")
        result = manager.run_nested(tx, _update_missing_user, mode)
        if result.ok:
            notes.append(f"nested update affected {result.value} row(s)")
        else:
            notes.append(f"nested update rolled back: {result.error}")
    notes.append("outer transaction committed")
    return ScenarioResult(notes=notes)


def explicit_savepoint_example(manager: TransactionManager) -> ScenarioResult:
    return _savepoint_example(
        manager,
        UserCreate(name="ExplicitUser", email="explicit@example.com", balance=100),
        Explicit("sp_explicit"),
    )


def implicit_savepoint_example(manager: TransactionManager) -> ScenarioResult:
    return _savepoint_example(
        manager,
        UserCreate(name="ImplicitUser", email="implicit@example.com", balance=100),
        Implicit(),
    )


Scenario = Callable[[Database, TransactionManager, bool], ScenarioResult]


def _scenario_registry() -> Dict[str, Scenario]:
    """Registry of available scenarios, in run order."""
    return {
        "crud": lambda database, manager, reset: crud_walkthrough(database, reset),
        "explicit_savepoint": lambda database, manager, reset: explicit_savepoint_example(manager),
        "implicit_savepoint": lambda database, manager, reset: implicit_savepoint_example(manager),
    }


def available_scenarios() -> List[str]:
    """List available scenario names."""
    return list(_scenario_registry().keys())


def _resolve_scenario(name: str) -> Scenario:
    registry = _scenario_registry()
    if name not in registry:
        raise ValueError(f"Unknown scenario '{name}'. Available: {', '.join(registry)}")
    return registry[name]


def _execute(
    name: str,
    scenario: Scenario,
    database: Database,
    manager: TransactionManager,
    reset: bool,
) -> ScenarioResult:
    log.info(f"[SCENARIO START] {name}", extra={"scenario": name})
    try:
        result = scenario(database, manager, reset)
        result["ok"] = True
        result["error"] = None
        log.info(f"[SCENARIO SUCCESS] {name}", extra={"scenario": name})
    except Exception as exc:  # noqa: BLE001 - intentional broad catch to record failures
        log.exception(f"[SCENARIO FAILED] {name}", extra={"scenario": name})
        result = ScenarioResult(ok=False, error=str(exc), notes=[])
    result["scenario"] = name
    result["users"] = _snapshot(database)
    return result


def run_scenarios(
    scenario_names: Optional[Iterable[str]],
    database: Database,
    reset: bool = True,
    policy: Optional[NestedFailurePolicy] = None,
) -> List[ScenarioResult]:
    """
    Run one or more scenarios against ``database``.

    Parameters
    ----------
    scenario_names : iterable[str] | None
        Scenario names to execute. If None or ["all"], executes all available.
    database : Database
        Target handle; the schema is migrated before anything runs.
    reset : bool
        Remove every existing user first so reruns start clean. When false,
        existing users (soft-deleted ones included) are left untouched.
    policy : "continue" | "abort" | None
        Nested failure policy for the savepoint scenarios. Defaults to settings.

    Returns
    -------
    List[ScenarioResult]
        One result per scenario, in run order.

    Raises
    ------
    ValueError
        If a scenario name is unknown (checked before anything runs).
    MigrationError, DatabaseConnectionError
        If the schema cannot be prepared.
    """
    names = list(scenario_names) if scenario_names is not None else ["all"]
    if len(names) == 1 and names[0] == "all":
        names = available_scenarios()
    resolved = [(name, _resolve_scenario(name)) for name in names]

    migrate(database)
    if reset:
        with database.session_scope() as session:
            users.purge_users(session)

    manager = TransactionManager(
        database, failure_policy=policy or get_settings().nested_failure_policy
    )
    results: List[ScenarioResult] = []
    for name, scenario in resolved:
        results.append(_execute(name, scenario, database, manager, reset))

    log.info(
        f"[SCENARIOS COMPLETE] {len(results)} scenario(s) executed",
        extra={"scenarios": names, "failed": [r["scenario"] for r in results if not r["ok"]]},
    )
    return results


__all__ = [
    "ScenarioResult",
    "available_scenarios",
    "crud_walkthrough",
    "explicit_savepoint_example",
    "implicit_savepoint_example",
    "run_scenarios",
]
