"""
Bank Model.

Soft-deletable lookup table of banks.
"""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from catalog.models.base import Base, IdMixin, SoftDeleteMixin, TimestampMixin, UUIDMixin


class Bank(IdMixin, UUIDMixin, TimestampMixin, SoftDeleteMixin, Base):
    """A bank, identified by a short unique code."""

    __tablename__ = "banks"

    code: Mapped[str] = mapped_column(
        String(20),
        unique=True,
        nullable=False,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(
        default=True,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Bank(id={self.id}, code={self.code!r})>"
