"""
Market and Local Models.

A market groups many locals (stalls). Markets are soft-deleted; locals are
removed outright.
"""

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from catalog.models.base import Base, IdMixin, SoftDeleteMixin, TimestampMixin, UUIDMixin


class Market(IdMixin, UUIDMixin, TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "markets"

    code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)

    locals: Mapped[list["Local"]] = relationship(
        back_populates="market",
        order_by="Local.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Market(id={self.id}, code={self.code!r})>"


class Local(IdMixin, UUIDMixin, TimestampMixin, Base):
    __tablename__ = "locals"

    market_id: Mapped[int] = mapped_column(
        ForeignKey("markets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    code: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    monthly_rent: Mapped[int] = mapped_column(default=0, nullable=False)
    active: Mapped[bool] = mapped_column(default=True, nullable=False)

    market: Mapped[Market] = relationship(back_populates="locals")

    def __repr__(self) -> str:
        return f"<Local(id={self.id}, code={self.code!r})>"
