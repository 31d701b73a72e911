"""
Synthetic user seeding script for the ORM practice walkthroughs.

Implements deterministic pseudo-random user generation and bulk loading in
batches, all inside one managed transaction so a failed batch leaves nothing
behind.
"""

from __future__ import annotations

import random
import sys
import time
from typing import List, Optional

import typer
from sqlalchemy.exc import SQLAlchemyError

from orm_practice.config import get_settings
from orm_practice.domain.models import UserCreate
from orm_practice.exceptions import DatabaseConnectionError, MigrationError, TransactionError
from orm_practice.infrastructure.db_factory import Database, migrate, open_database
from orm_practice.repositories.user_repository import create_users
from orm_practice.transactions import TransactionManager
from orm_practice.utils.logging import configure_logging

app = typer.Typer(help="Generate synthetic users and bulk insert them.")

_FIRST = ["Potato", "Tomato", "Carrot", "Onion", "Garlic", "Pepper", "Leek", "Radish"]
_ADJECTIVES = ["Fresh", "Crispy", "Golden", "Tiny", "Giant", "Roasted"]


def _generate_users(rows: int, seed: int) -> List[UserCreate]:
    rng = random.Random(seed)
    generated: List[UserCreate] = []
    for i in range(rows):
        name = f"{rng.choice(_ADJECTIVES)} {rng.choice(_FIRST)}"
        generated.append(
            UserCreate(
                name=name,
                # index keeps the address unique regardless of the random name
                email=f"{name.lower().replace(' ', '.')}.{i}@example.com",
                age=rng.randint(1, 99),
                balance=rng.randint(0, 10_000),
            )
        )
    return generated


def _load(database: Database, users: List[UserCreate], batch_size: int) -> int:
    manager = TransactionManager(database)
    inserted = 0
    with manager.transaction() as tx:
        for start in range(0, len(users), batch_size):
            inserted += len(create_users(tx.session, users[start : start + batch_size]))
    return inserted


@app.command()
def main(
    rows: Optional[int] = typer.Option(
        None,
        "--rows",
        "-r",
        min=1,
        help="Number of users to generate (default from settings).",
    ),
    batch_size: Optional[int] = typer.Option(
        None,
        "--batch-size",
        "-b",
        min=1,
        help="Users per bulk insert (default from settings).",
    ),
    seed: int = typer.Option(
        42,
        "--seed",
        help="Deterministic RNG seed.",
    ),
    db: Optional[str] = typer.Option(
        None,
        "--db",
        help="Data-source locator override.",
    ),
) -> None:
    """
    Generate synthetic users and bulk insert them in one transaction.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    rows = rows if rows is not None else settings.seed_rows
    batch_size = batch_size if batch_size is not None else settings.seed_batch_size

    start = time.perf_counter()
    users = _generate_users(rows, seed)
    typer.echo(f"Generated {rows:,} users (batch={batch_size}, seed={seed})")

    try:
        database = open_database(db, settings)
    except DatabaseConnectionError as exc:
        typer.echo(f"Cannot open database: {exc}", err=True)
        raise typer.Exit(code=1)
    try:
        migrate(database)
        inserted = _load(database, users, batch_size)
    except (MigrationError, TransactionError, SQLAlchemyError) as exc:
        typer.echo(f"Seeding failed: {exc}", err=True)
        raise typer.Exit(code=1)
    finally:
        database.close()

    duration = time.perf_counter() - start
    typer.echo(f"Inserted {inserted:,} users in {duration:.2f}s.")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
