from __future__ import annotations

import json
import sys
from typing import Optional

import typer

from orm_practice.config import get_settings
from orm_practice.domain.models import UserRead
from orm_practice.exceptions import DatabaseConnectionError, MigrationError
from orm_practice.infrastructure.db_factory import Database, migrate, open_database
from orm_practice.reporter import print_results, print_users
from orm_practice.repositories.user_repository import list_users
from orm_practice.scenarios import available_scenarios, run_scenarios
from orm_practice.utils.logging import configure_logging, get_logger

app = typer.Typer(help="ORM practice CLI: CRUD and savepoint walkthroughs.")
log = get_logger(__name__)

POLICIES = ("continue", "abort")


@app.callback()
def setup() -> None:
    """
    Configure logging from settings before any command runs.
    """
    settings = get_settings()
    configure_logging(
        level=settings.log_level, json_logs=settings.log_json, sql_echo=settings.db_echo
    )


def _open(db: Optional[str]) -> Database:
    try:
        return open_database(db)
    except DatabaseConnectionError as exc:
        log.error(f"[FATAL] {exc}")
        raise typer.Exit(code=1)


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_locator} | env={settings.app_env} | "
        f"nested_failure_policy={settings.nested_failure_policy} | "
        f"seed rows={settings.seed_rows} batch={settings.seed_batch_size}"
    )


@app.command()
def run(
    scenario: str = typer.Option(
        "all",
        "--scenario",
        "-s",
        help="Scenario to run (crud, explicit_savepoint, implicit_savepoint, all, list).",
    ),
    policy: Optional[str] = typer.Option(
        None,
        "--policy",
        "-p",
        help="Nested failure policy: continue (commit the outer work) or abort.",
    ),
    db: Optional[str] = typer.Option(
        None,
        "--db",
        help="Data-source locator override (file path, :memory: or URL).",
    ),
    keep: bool = typer.Option(
        False,
        "--keep",
        help="Keep existing users instead of purging them first.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Print results as JSON instead of tables.",
    ),
) -> None:
    """
    Run one or all scenarios and show the resulting records.
    """
    if scenario == "list":
        typer.echo("Available scenarios: " + ", ".join(available_scenarios()))
        return
    if policy is not None and policy not in POLICIES:
        raise typer.BadParameter(f"must be one of: {', '.join(POLICIES)}", param_hint="--policy")
    if scenario != "all" and scenario not in available_scenarios():
        raise typer.BadParameter(
            f"unknown scenario '{scenario}'. Available: {', '.join(available_scenarios())}",
            param_hint="--scenario",
        )

    database = _open(db)
    try:
        results = run_scenarios([scenario], database, reset=not keep, policy=policy)
    except (DatabaseConnectionError, MigrationError) as exc:
        log.error(f"[FATAL] {exc}")
        raise typer.Exit(code=1)
    finally:
        database.close()

    if json_output:
        typer.echo(json.dumps(results, indent=2))
    else:
        print_results(results)
    if not all(res["ok"] for res in results):
        raise typer.Exit(code=2)


@app.command()
def users(
    db: Optional[str] = typer.Option(
        None,
        "--db",
        help="Data-source locator override (file path, :memory: or URL).",
    ),
    include_deleted: bool = typer.Option(
        False,
        "--all",
        "-a",
        help="Include soft-deleted users.",
    ),
) -> None:
    """
    List the users currently stored.
    """
    database = _open(db)
    try:
        migrate(database)
        with database.session_scope() as session:
            rows = [
                UserRead.model_validate(user).model_dump(mode="json")
                for user in list_users(session, include_deleted=include_deleted)
            ]
    except (DatabaseConnectionError, MigrationError) as exc:
        log.error(f"[FATAL] {exc}")
        raise typer.Exit(code=1)
    finally:
        database.close()
    print_users(rows)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
