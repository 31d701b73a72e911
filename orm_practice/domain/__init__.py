"""
Domain package for the ORM practice walkthroughs.

Exports the ORM mapping and the pydantic schemas used by the repository,
scenarios and CLI. Keep this package focused on data definitions and
validation concerns.
"""

from orm_practice.domain.models import Base, User, UserCreate, UserRead

__all__ = [
    "Base",
    "User",
    "UserCreate",
    "UserRead",
]
