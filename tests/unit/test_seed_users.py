from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError
from typer.testing import CliRunner

from orm_practice.infrastructure.db_factory import Database
from orm_practice.repositories.user_repository import list_users
from scripts import seed_users


def _count(database: Database) -> int:
    with database.session_scope() as session:
        return len(list_users(session))


@pytest.mark.parametrize("batch_size", [1, 7, 50])
def test_load_inserts_every_generated_user(database: Database, batch_size: int):
    users = seed_users._generate_users(20, seed=7)

    assert seed_users._load(database, users, batch_size) == 20
    assert _count(database) == 20


def test_generated_emails_are_unique():
    users = seed_users._generate_users(200, seed=1)
    assert len({user.email for user in users}) == 200


def test_failed_batch_leaves_nothing_behind(database: Database):
    users = seed_users._generate_users(10, seed=3)
    # the last batch repeats the first email
    users.append(users[0])

    with pytest.raises(IntegrityError):
        seed_users._load(database, users, batch_size=5)

    assert _count(database) == 0


@pytest.mark.parametrize(
    "args",
    [["--batch-size=-3"], ["--batch-size=0"], ["--rows=0"]],
    ids=["negative-batch", "zero-batch", "zero-rows"],
)
def test_cli_rejects_non_positive_sizes(tmp_path, args):
    db_path = tmp_path / "seed.db"
    result = CliRunner().invoke(seed_users.app, [*args, "--db", str(db_path)])

    assert result.exit_code == 2
    assert not db_path.exists()


def test_cli_inserts_requested_rows(tmp_path, monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "CRITICAL")
    db_path = tmp_path / "seed.db"

    result = CliRunner().invoke(
        seed_users.app, ["--rows", "12", "--batch-size", "5", "--db", str(db_path)]
    )

    assert result.exit_code == 0, result.output
    assert "Inserted 12 users" in result.stdout
    with Database(str(db_path)) as database:
        assert _count(database) == 12
