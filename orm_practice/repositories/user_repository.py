"""
Data-access helpers for the ``users`` table.

Every function takes the ORM ``Session`` to work in, so callers decide the
transaction boundary (a ``Database.session_scope()`` for one-off work, or
``Transaction.session`` inside a managed transaction). Soft-deleted rows are
invisible to reads and updates unless asked for.
"""

from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Sequence, Union

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from orm_practice.domain.models import User, UserCreate, utcnow
from orm_practice.exceptions import NoRowsAffectedError, UserNotFoundError
from orm_practice.utils.logging import get_logger

log = get_logger(__name__)

UserInput = Union[UserCreate, Mapping[str, Any]]

_FILTER_FIELDS = frozenset({"id", "name", "email", "age", "balance"})
_UPDATABLE_FIELDS = frozenset({"name", "email", "age", "balance"})


def _coerce(data: UserInput) -> UserCreate:
    if isinstance(data, UserCreate):
        return data
    return UserCreate.model_validate(data)


def _check_fields(fields: Iterable[str], allowed: frozenset, operation: str) -> None:
    unknown = sorted(set(fields) - allowed)
    if unknown:
        raise ValueError(f"Cannot {operation} on unknown user field(s): {', '.join(unknown)}")


def _criteria(where: Mapping[str, Any]) -> list:
    if not where:
        raise ValueError("Refusing to touch every user without criteria")
    _check_fields(where, _FILTER_FIELDS, "filter")
    return [getattr(User, key) == value for key, value in where.items()]


def create_user(session: Session, data: UserInput) -> User:
    """Insert one user and flush so the primary key is assigned."""
    user = _coerce(data).to_orm()
    session.add(user)
    session.flush()
    log.debug(f"[CREATE] user id={user.id}", extra={"email": user.email})
    return user


def create_users(session: Session, rows: Sequence[UserInput]) -> List[User]:
    """
    Bulk insert several users with a single flush.
    """
    users = [_coerce(row).to_orm() for row in rows]
    session.add_all(users)
    session.flush()
    log.debug(f"[CREATE] {len(users)} users", extra={"rows": len(users)})
    return users


def list_users(session: Session, include_deleted: bool = False) -> List[User]:
    stmt = select(User).order_by(User.id)
    if not include_deleted:
        stmt = stmt.where(User.deleted_at.is_(None))
    return list(session.scalars(stmt).all())


def get_user_by_email(session: Session, email: str) -> User:
    """
    Fetch the live user with ``email``.

    Raises
    ------
    UserNotFoundError
        If no such user exists or it was soft-deleted.
    """
    stmt = select(User).where(User.email == email, User.deleted_at.is_(None))
    user = session.scalars(stmt).one_or_none()
    if user is None:
        raise UserNotFoundError(f"No user with email {email!r}")
    return user


def save_user(session: Session, user: User) -> User:
    """
    Persist every field of ``user``, attached or not, and return the
    session's instance.
    """
    merged = session.merge(user)
    merged.updated_at = utcnow()
    session.flush()
    return merged


def update_user_fields(
    session: Session,
    where: Mapping[str, Any],
    values: Mapping[str, Any],
    require_match: bool = False,
) -> int:
    """
    Update ``values`` on every live user matching ``where``.

    Parameters
    ----------
    where : Mapping[str, Any]
        Equality criteria, e.g. ``{"email": "tomato@example.com"}``.
    values : Mapping[str, Any]
        Field names and new values.
    require_match : bool
        Treat "zero rows affected" as a failure.

    Returns
    -------
    int
        Number of rows affected.

    Raises
    ------
    NoRowsAffectedError
        If ``require_match`` is set and nothing matched.
    ValueError
        If a field name is unknown or ``values`` is empty.
    """
    if not values:
        raise ValueError("Nothing to update")
    _check_fields(values, _UPDATABLE_FIELDS, "update")
    stmt = (
        update(User)
        .where(*_criteria(where), User.deleted_at.is_(None))
        .values(**dict(values), updated_at=utcnow())
    )
    affected = session.execute(stmt).rowcount
    log.debug(
        f"[UPDATE] {affected} row(s)",
        extra={"criteria": dict(where), "fields": sorted(values), "rows": affected},
    )
    if require_match and affected == 0:
        raise NoRowsAffectedError(f"No user matched {dict(where)!r}; nothing updated")
    return affected


def update_user_field(
    session: Session,
    where: Mapping[str, Any],
    field: str,
    value: Any,
    require_match: bool = False,
) -> int:
    """Update a single field. See ``update_user_fields``."""
    return update_user_fields(session, where, {field: value}, require_match=require_match)


def delete_user(session: Session, user: User) -> None:
    """Soft-delete ``user``: it stays in the table but disappears from reads."""
    target = session.merge(user)
    target.deleted_at = utcnow()
    session.flush()


def purge_users(session: Session) -> int:
    """Hard-delete every user, soft-deleted ones included."""
    affected = session.execute(delete(User)).rowcount
    log.debug(f"[PURGE] {affected} row(s)", extra={"rows": affected})
    return affected


__all__ = [
    "UserInput",
    "create_user",
    "create_users",
    "delete_user",
    "get_user_by_email",
    "list_users",
    "purge_users",
    "save_user",
    "update_user_field",
    "update_user_fields",
]
