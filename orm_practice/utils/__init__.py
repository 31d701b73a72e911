"""
Utilities package for the ORM practice walkthroughs.

Exports shared helpers for logging and other cross-cutting concerns.
Keep this package lightweight and free of domain-specific logic.
"""

from orm_practice.utils.logging import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
]
