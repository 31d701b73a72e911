"""
Domain models for the ORM practice walkthroughs.

``User`` is the SQLAlchemy declarative mapping for the ``users`` table, with
the bookkeeping columns (timestamps and a soft-delete marker) every record
carries. ``UserCreate`` and ``UserRead`` are the pydantic schemas used to
validate input and serialise output.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field
from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    """
    Representation of a single row in the ``users`` table.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )

    name: Mapped[str] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255), unique=True)
    age: Mapped[int] = mapped_column(Integer, default=0)
    balance: Mapped[int] = mapped_column(Integer, default=0)

    def __repr__(self) -> str:
        return f"User(id={self.id!r}, name={self.name!r}, email={self.email!r})"


class UserCreate(BaseModel):
    """
    Input accepted when creating a user.
    """

    name: str = Field(..., min_length=1, max_length=255, description="Display name.")
    email: str = Field(..., min_length=3, max_length=255, description="Unique e-mail address.")
    age: int = Field(0, ge=0, description="Age in years.")
    balance: int = Field(0, description="Point balance.")

    model_config = {"frozen": True}

    def to_orm(self) -> User:
        return User(**self.model_dump())


class UserRead(BaseModel):
    """
    Read-only snapshot of a persisted user.
    """

    id: int
    name: str
    email: str
    age: int
    balance: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    model_config = {
        "frozen": True,
        "from_attributes": True,
    }


__all__ = ["Base", "User", "UserCreate", "UserRead", "utcnow"]
