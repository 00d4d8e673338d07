"""
SQLAlchemy Base Model.

Base class for all catalog models with common fields and utilities.
"""

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import DateTime, String, inspect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    """Return current UTC time as timezone-naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    def column_values(self) -> dict[str, Any]:
        """Every mapped column attribute, keyed by attribute name."""
        return {
            attr.key: getattr(self, attr.key)
            for attr in inspect(self).mapper.column_attrs
        }

    def loaded_counts(self) -> dict[str, int]:
        """Relationship counts attached by a `with_count` query."""
        return dict(self.__dict__.get("_loaded_counts", {}))

    def set_loaded_counts(self, counts: dict[str, int]) -> None:
        self.__dict__["_loaded_counts"] = dict(counts)

    def loaded_relations(self) -> list[str]:
        """Relationship names already loaded; reading them never hits the database."""
        state = inspect(self)
        return [name for name in state.mapper.relationships.keys() if name not in state.unloaded]

    def relation_values(self, _seen: set[int] | None = None) -> dict[str, Any]:
        """Loaded relationships as nested dicts, following loaded relations only."""
        seen = (_seen or set()) | {id(self)}
        data: dict[str, Any] = {}
        for name in self.loaded_relations():
            value = getattr(self, name)
            if value is None:
                data[name] = None
            elif isinstance(value, Base):
                if id(value) not in seen:
                    data[name] = value._nested_dict(seen)
            else:
                data[name] = [item._nested_dict(seen) for item in value if id(item) not in seen]
        return data

    def _nested_dict(self, seen: set[int]) -> dict[str, Any]:
        data = self.to_dict()
        data.update(self.relation_values(seen))
        return data

    def to_dict(self) -> dict[str, Any]:
        """Persisted attributes plus any loaded `<relation>_count` values."""
        data = self.column_values()
        data.update(self.loaded_counts())
        return data


class IdMixin:
    """Mixin that adds an auto-incrementing integer primary key."""

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)


class UUIDMixin:
    """Mixin that adds a unique public UUID alongside the integer key."""

    uuid: Mapped[str] = mapped_column(
        String(36),
        unique=True,
        nullable=False,
        default=lambda: str(uuid4()),
    )


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utc_now,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )


class SoftDeleteMixin:
    """Mixin that marks rows deleted instead of removing them."""

    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
        default=None,
        index=True,
    )

    @property
    def is_trashed(self) -> bool:
        return self.deleted_at is not None


def supports_soft_delete(model: type) -> bool:
    return issubclass(model, SoftDeleteMixin)
