"""
Infrastructure package for the ORM practice walkthroughs.

Centralizes database connectivity concerns (locator parsing, engine and
session lifecycle, schema migration). Keep this layer focused on I/O and
resource management, decoupled from transaction and scenario logic.
"""

from orm_practice.infrastructure.db_factory import (
    MEMORY_LOCATOR,
    Database,
    build_url,
    migrate,
    open_database,
)

__all__ = [
    "MEMORY_LOCATOR",
    "Database",
    "build_url",
    "migrate",
    "open_database",
]
