"""
Repositories package for the ORM practice walkthroughs.

Exposes the session-scoped data-access helpers for the ``users`` table.
"""

from orm_practice.repositories.user_repository import (
    create_user,
    create_users,
    delete_user,
    get_user_by_email,
    list_users,
    purge_users,
    save_user,
    update_user_field,
    update_user_fields,
)

__all__ = [
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
